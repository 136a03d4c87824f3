"""
HTTP client for the spreadsheet-backed timetable query service.

The service is a Google Apps Script web app. It takes the shared password,
a query mode and the user's question, and answers with JSON: a full
timetable, a clarification descriptor, or free-form results.
"""
from __future__ import annotations

import logging
import typing as t

import requests

from services.relay_service.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class QueryService(t.Protocol):
    def query(self, question: str, mode: str = "auto") -> dict[str, t.Any]:
        ...


class AppsScriptQueryClient:
    """Posts questions to the Apps Script exec URL."""

    def __init__(self, exec_url: str, password: str = "", timeout: float = 30.0,
                 session: t.Optional[requests.Session] = None) -> None:
        if not exec_url:
            raise ConfigurationError("Missing APPS_SCRIPT_EXEC")
        self.exec_url = exec_url
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()

    def query(self, question: str, mode: str = "auto") -> dict[str, t.Any]:
        """
        Run one query against the upstream service.

        Args:
            question: The user's natural-language question
            mode: Query mode understood by the service ("auto" by default)

        Returns:
            The decoded JSON body

        Raises:
            UpstreamError: On timeout, HTTP error status, or a non-JSON body
        """
        payload = {"password": self.password, "mode": mode, "question": question}
        try:
            response = self.session.post(self.exec_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.Timeout:
            raise UpstreamError(f"Timetable query timed out after {self.timeout} seconds")
        except requests.HTTPError as e:
            logger.error("Query service returned %s: %s", e.response.status_code, e.response.text)
            raise UpstreamError(f"HTTP error from query service: {e.response.status_code}")
        except ValueError:
            # requests' JSONDecodeError is both a ValueError and a RequestException
            raise UpstreamError("Query service returned a non-JSON response")
        except requests.RequestException as e:
            raise UpstreamError(f"Error calling query service: {e}")

        if not isinstance(data, dict):
            return {"results": data}
        return data
