import logging
from typing import List

from prettytable import PrettyTable

from pushguard.core.classes import Finding

log = logging.getLogger("pushguard.cli")


def pluralize(word: str, count: int) -> str:
    return word if count == 1 else f"{word}s"


class Messages:

    @staticmethod
    def format_location(finding: Finding) -> str:
        if finding.start_line:
            return f"{finding.file}:{finding.start_line}"
        return finding.file

    @staticmethod
    def create_hook_messages(findings: List[Finding]) -> List[str]:
        """
        Creates the lines shown to the pusher for the detected secrets
        :param findings: List[Finding] - findings of all scanned references
        :return:
        """
        count = len(findings)
        header = "Push contains a secret:" if count == 1 else f"Push contains {count} secrets:"
        messages = [header, ""]
        for finding in findings:
            messages.append(f"  {finding.rule_id} in {Messages.format_location(finding)}")
            messages.append(f"    Secret:  {finding.secret}")
            messages.append(f"    Commit:  {finding.commit}")
            if finding.description:
                messages.append(f"    Details: {finding.description}")
            messages.append("")
        messages.append(f"{count} {pluralize('secret', count)} found")
        return messages

    @staticmethod
    def create_console_findings_table(findings: List[Finding]) -> PrettyTable:
        """
        Creates the findings table for console output
        :param findings: List[Finding] - findings of all scanned references
        :return:
        """
        findings_table = PrettyTable(
            [
                "Rule",
                "File",
                "Line",
                "Commit",
                "Secret"
            ]
        )
        for finding in findings:
            findings_table.add_row(
                [
                    finding.rule_id,
                    finding.file,
                    finding.start_line,
                    finding.commit[:12],
                    finding.secret,
                ]
            )
        return findings_table

    @staticmethod
    def create_findings_json(findings: List[Finding], blocked: bool) -> dict:
        return {
            "blocked": blocked,
            "count": len(findings),
            "findings": [finding.to_dict() for finding in findings],
        }
