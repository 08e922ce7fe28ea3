#!/usr/bin/env python3
"""Unit tests for the PlayHT synthesis client.

The HTTP session is mocked; no request leaves the process.
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import unittest
from unittest.mock import Mock

import requests

from pagecast.config import PlayHTConfig
from pagecast.jobs import PageStatus, PollError, SynthesisRejected
from pagecast.tts import PlayHTClient


def _response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body if body is not None else {}
    response.text = ""
    response.reason = "Error"
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status_code} Error", response=response
        )
    else:
        response.raise_for_status.return_value = None
    return response


class TestPlayHTSubmit(unittest.TestCase):
    """Test job submission."""

    def setUp(self):
        self.session = Mock()
        self.config = PlayHTConfig(api_key="secret", user_id="user-1", api_url="https://tts.test/v1/tts")
        self.client = PlayHTClient(self.config, session=self.session)

    def test_submit_returns_job_id(self):
        self.session.post.return_value = _response(201, {'id': 'job-42'})

        handle = self.client.submit("Hello there.", "s3://voice", 0.7, 1.2)

        self.assertEqual(handle, 'job-42')
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://tts.test/v1/tts")
        self.assertEqual(kwargs['json'], {
            'model': 'PlayDialog',
            'text': "Hello there.",
            'voice': "s3://voice",
            'speed': 1.2,
            'temperature': 0.7,
        })
        self.assertEqual(kwargs['headers'], {'AUTHORIZATION': 'secret', 'X-USER-ID': 'user-1'})
        self.assertEqual(kwargs['timeout'], 30.0)

    def test_submit_omits_missing_temperature(self):
        self.session.post.return_value = _response(201, {'id': 'job-1'})

        self.client.submit("Hello", "s3://voice", None, 1.0)

        self.assertNotIn('temperature', self.session.post.call_args[1]['json'])

    def test_http_error_carries_status(self):
        self.session.post.return_value = _response(401, {'error_message': 'invalid api key'})

        with self.assertRaises(SynthesisRejected) as ctx:
            self.client.submit("Hello", "s3://voice", None, 1.0)

        self.assertEqual(ctx.exception.status_code, 401)
        self.assertIn("invalid api key", str(ctx.exception))

    def test_network_error(self):
        self.session.post.side_effect = requests.ConnectionError("connection refused")

        with self.assertRaises(SynthesisRejected) as ctx:
            self.client.submit("Hello", "s3://voice", None, 1.0)

        self.assertIsNone(ctx.exception.status_code)

    def test_missing_job_id(self):
        self.session.post.return_value = _response(200, {'status': 'queued'})

        with self.assertRaises(SynthesisRejected):
            self.client.submit("Hello", "s3://voice", None, 1.0)


class TestPlayHTStatus(unittest.TestCase):
    """Test job status mapping."""

    def setUp(self):
        self.session = Mock()
        self.client = PlayHTClient(PlayHTConfig(api_url="https://tts.test/v1/tts"), session=self.session)

    def _status(self, body):
        self.session.get.return_value = _response(200, body)
        return self.client.query_status("job-42")

    def test_completed(self):
        result = self._status({'id': 'job-42', 'output': {'status': 'COMPLETED', 'url': 'https://cdn/42.mp3'}})

        self.assertEqual(result.status, PageStatus.COMPLETED)
        self.assertEqual(result.url, 'https://cdn/42.mp3')
        self.assertEqual(self.session.get.call_args[0][0], "https://tts.test/v1/tts/job-42")

    def test_completed_without_url_is_in_flight(self):
        result = self._status({'output': {'status': 'COMPLETED'}})

        self.assertEqual(result.status, PageStatus.PROCESSING)

    def test_failed(self):
        result = self._status({'output': {'status': 'FAILED', 'error': 'voice not found'}})

        self.assertEqual(result.status, PageStatus.FAILED)
        self.assertEqual(result.error, 'voice not found')

    def test_failed_without_detail(self):
        result = self._status({'output': {'status': 'ERROR'}})

        self.assertEqual(result.status, PageStatus.FAILED)
        self.assertIn("job-42", result.error)

    def test_in_progress(self):
        self.assertEqual(self._status({'output': {'status': 'IN_PROGRESS'}}).status, PageStatus.PROCESSING)
        self.assertEqual(self._status({'id': 'job-42'}).status, PageStatus.PROCESSING)

    def test_query_error(self):
        self.session.get.side_effect = requests.Timeout("read timed out")

        with self.assertRaises(PollError):
            self.client.query_status("job-42")

    def test_query_http_error(self):
        self.session.get.return_value = _response(503)

        with self.assertRaises(PollError):
            self.client.query_status("job-42")


if __name__ == '__main__':
    unittest.main()
