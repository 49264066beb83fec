import logging
from typing import Dict, Optional

import requests

from pushguard import __version__

from .exceptions import APIFailure

logger = logging.getLogger("pushguard")


class CliClient:
    def __init__(self, api_url: str, token: Optional[str] = None, timeout: int = 30):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def get_headers(self) -> Dict:
        headers = {
            'User-Agent': f'pushguard/{__version__}',
            "accept": "application/json"
        }
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        return headers

    def request(
        self,
        path: str,
        method: str = "GET",
        headers: Optional[Dict] = None,
        payload: Optional[Dict] = None,
    ) -> requests.Response:
        url = f"{self.api_url}/{path}"

        headers = headers or self.get_headers()

        try:
            response = requests.request(
                method=method.upper(),
                url=url,
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )

            response.raise_for_status()
            return response

        except requests.exceptions.RequestException as e:
            logger.error(f"API request failed: {str(e)}")
            raise APIFailure(f"Request failed: {str(e)}") from e
