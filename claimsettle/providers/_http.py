"""
HTTP session setup shared by the provider clients.
"""
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


def build_session(retry_count: int = 3, api_token: Optional[str] = None) -> requests.Session:
    """
    Create a requests session that retries connection errors and 5xx responses.

    Args:
        retry_count: Number of retries per request
        api_token: Optional bearer token sent with every request

    Returns:
        Configured session
    """
    session = requests.Session()
    retries = Retry(
        total=retry_count,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
        connect=retry_count,
        read=retry_count,
        other=retry_count
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    session.headers.update({"Accept": "application/json"})
    if api_token:
        session.headers.update({"Authorization": f"Bearer {api_token}"})
    return session
