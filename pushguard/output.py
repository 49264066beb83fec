import json
import logging
import sys
from typing import TextIO

from .config import HookConfig
from .core.classes import HookOutput
from .core.messages import Messages


class OutputHandler:
    config: HookConfig
    logger: logging.Logger

    def __init__(self, config: HookConfig, stream: TextIO = None):
        self.config = config
        self.stream = stream or sys.stdout
        self.logger = logging.getLogger("pushguard.cli")

    def handle_output(self, hook_output: HookOutput) -> None:
        """Main output handler that determines output format"""
        if self.config.enable_json:
            self.output_console_json(hook_output)
        elif self.config.enable_table:
            self.output_console_table(hook_output)
        else:
            self.output_hook_messages(hook_output)

    def return_exit_code(self, hook_output: HookOutput) -> int:
        if self.report_pass(hook_output):
            return 0
        return 1

    def report_pass(self, hook_output: HookOutput) -> bool:
        """Determines if the push may be accepted"""
        if not hook_output.blocked:
            return True

        if self.config.disable_blocking:
            self.logger.warning("Secrets were found but blocking is disabled, accepting push")
            return True

        return False

    def output_hook_messages(self, hook_output: HookOutput) -> None:
        """Writes the hook messages the way git relays them to the pusher"""
        if not hook_output.blocked:
            self.logger.debug("No secrets found")
            return
        for message in hook_output.messages:
            print(message, file=self.stream)
        print(f"ERROR: {hook_output.error}", file=self.stream)

    def output_console_table(self, hook_output: HookOutput) -> None:
        if not hook_output.findings:
            self.logger.info("No secrets found")
            return
        table = Messages.create_console_findings_table(hook_output.findings)
        print(table, file=self.stream)
        if hook_output.error:
            print(f"ERROR: {hook_output.error}", file=self.stream)

    def output_console_json(self, hook_output: HookOutput) -> None:
        """Outputs JSON formatted results"""
        console_json = Messages.create_findings_json(hook_output.findings, hook_output.blocked)
        console_json["error"] = hook_output.error
        print(json.dumps(console_json), file=self.stream)
