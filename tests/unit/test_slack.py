"""
Unit tests for Slack notifications (dbbackup/utils/slack.py).
"""

import logging
from unittest.mock import patch

import httpx

from dbbackup.utils.slack import SlackNotifier


WEBHOOK = 'https://hooks.slack.example/services/T000/B000/XXXX'


def _response(status_code):
    return httpx.Response(status_code, request=httpx.Request('POST', WEBHOOK))


class TestSlackNotifier:
    """Test SlackNotifier.notify."""

    @patch('dbbackup.utils.slack.httpx.post')
    def test_notify_success(self, mock_post):
        mock_post.return_value = _response(200)

        assert SlackNotifier(WEBHOOK).notify('Backup of mysql completed successfully') is True

        mock_post.assert_called_once()
        assert mock_post.call_args[0][0] == WEBHOOK
        assert mock_post.call_args[1]['json'] == {'text': 'Backup of mysql completed successfully'}
        assert mock_post.call_args[1]['timeout'] == 10.0

    @patch('dbbackup.utils.slack.httpx.post')
    def test_notify_not_configured(self, mock_post):
        """Test no webhook means no request."""
        notifier = SlackNotifier('')

        assert notifier.enabled is False
        assert notifier.notify('hello') is False
        mock_post.assert_not_called()

    @patch('dbbackup.utils.slack.httpx.post')
    def test_notify_rejected(self, mock_post, caplog):
        """Test an HTTP error status is logged, not raised."""
        mock_post.return_value = _response(404)

        with caplog.at_level(logging.ERROR, logger='dbbackup.utils.slack'):
            assert SlackNotifier(WEBHOOK).notify('hello') is False

        assert 'HTTP 404' in caplog.text
        assert WEBHOOK not in caplog.text

    @patch('dbbackup.utils.slack.httpx.post')
    def test_notify_network_error(self, mock_post, caplog):
        """Test a transport failure is logged without the webhook URL."""
        mock_post.side_effect = httpx.ConnectError(f'cannot reach {WEBHOOK}')

        with caplog.at_level(logging.ERROR, logger='dbbackup.utils.slack'):
            assert SlackNotifier(WEBHOOK).notify('hello') is False

        assert 'ConnectError' in caplog.text
        assert WEBHOOK not in caplog.text
