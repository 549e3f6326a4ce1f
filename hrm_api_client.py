#!/usr/bin/env python3

import json
import logging
from dataclasses import dataclass
from urllib.parse import urljoin

import requests
import urllib3

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResponse:
    status_code: int
    body: str

    def json(self):
        """Parsed body, or None when the server did not send JSON"""
        try:
            return json.loads(self.body) if self.body else None
        except ValueError:
            return None

    @property
    def message(self):
        result = self.json()
        if isinstance(result, dict) and result.get('message'):
            return result['message']
        return self.body


def is_accepted(response):
    """2xx and a JSON object whose 'status' is truthy"""
    if response is None or not 200 <= response.status_code < 300:
        return False
    result = response.json()
    return isinstance(result, dict) and bool(result.get('status'))


class HRMAPIClient:
    """
    HRM REST API client. Bearer token auth, JSON in and out.

    HTTP error statuses are returned to the caller as UploadResponse data;
    only transport problems raise requests.exceptions.RequestException.
    """

    def __init__(self, base_url, api_key, timeout=30, verify_ssl=False):
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.api_key = api_key
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = verify_ssl

        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self.session.headers.update({
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        })

    @classmethod
    def from_config(cls, config):
        return cls(config.hrm_base_url, config.api_key,
                   timeout=config.request_timeout, verify_ssl=config.verify_ssl)

    def _url(self, endpoint):
        if endpoint.startswith('http://') or endpoint.startswith('https://'):
            return endpoint
        return urljoin(self.base_url, endpoint.lstrip('/'))

    def _make_request(self, method, endpoint, params=None, data=None):
        """Make HTTP request to the HRM API"""
        url = self._url(endpoint)

        if method.upper() == 'GET':
            response = self.session.get(url, params=params, timeout=self.timeout)
        elif method.upper() == 'POST':
            response = self.session.post(url, json=data, timeout=self.timeout)
        else:
            raise ValueError(f"Unsupported HTTP method: {method}")

        return UploadResponse(status_code=response.status_code, body=response.text)

    def post(self, url, json_body):
        """POST a JSON body; non-2xx responses come back as data"""
        return self._make_request('POST', url, data=json_body)

    def get(self, endpoint, params=None):
        return self._make_request('GET', endpoint, params=params)

    def get_branch_employees(self, branch_id):
        """Fetch the employees of one branch.

        Returns (branch_name, employees). Raises requests exceptions on
        transport errors and ValueError when the server refuses the request.
        """
        response = self.get(f"branch/{branch_id}/employees")
        result = response.json()

        if response.status_code != 200 or not isinstance(result, dict) or not result.get('status'):
            message = result.get('message') if isinstance(result, dict) else None
            raise ValueError(
                f"Error getting employees for branch {branch_id}: {message or 'Unknown error'} "
                f"(HTTP {response.status_code}, response: {response.body})"
            )

        employees = result.get('employees') or []
        branch = result.get('branch') or {}
        logger.info(f"Retrieved {result.get('total', len(employees))} employees for branch: {branch.get('name', branch_id)}")
        return branch.get('name', str(branch_id)), employees

    def sync_employees(self, endpoint, employees):
        """Post a batch of employee rows; returns the parsed result or None"""
        logger.info(f"Syncing {len(employees)} employees to HRM system")

        try:
            response = self.post(endpoint, {'employees': employees})
        except requests.exceptions.RequestException as e:
            logger.error(f"API request exception: {str(e)}")
            return None

        if is_accepted(response):
            result = response.json()
            logger.info(f"API request successful: {result.get('message', '')}")
            return result

        logger.error(f"API request failed with status code {response.status_code}: {response.message}")
        return None

    def test_connection(self):
        """Test API connection; any HTTP answer counts as reachable"""
        try:
            response = self.get('')
            logger.info(f"HRM API reachable at {self.base_url} (HTTP {response.status_code})")
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"HRM API connection failed: {str(e)}")
            return False
