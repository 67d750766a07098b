import unittest
from unittest.mock import MagicMock, patch

import requests

from fetch import DownloadError, ExportDownloader, download_travelways


def _response(status_code=200, json_data=None, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.content = content
    return response


class TestExportDownloader(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.downloader = ExportDownloader("https://example.test/export", session=self.session)
        self.downloader.poll_interval = 0
        self.downloader.retry_delay = 0

    def test_successful_download(self):
        self.session.get.side_effect = [
            _response(json_data={"resultUrl": "https://example.test/file.geojson"}),
            _response(content=b'{"type": "FeatureCollection", "features": []}'),
        ]
        content = self.downloader.download()
        self.assertTrue(content.startswith(b'{"type"'))
        self.assertEqual(self.session.get.call_args_list[1].args[0],
                         "https://example.test/file.geojson")

    def test_polls_until_export_ready(self):
        self.session.get.side_effect = [
            _response(json_data={"resultUrl": ""}),
            _response(json_data={}),
            _response(json_data={"resultUrl": "https://example.test/file.geojson"}),
        ]
        self.assertEqual(self.downloader.result_url(), "https://example.test/file.geojson")
        self.assertEqual(self.session.get.call_count, 3)

    def test_gives_up_after_deadline(self):
        self.session.get.return_value = _response(json_data={"resultUrl": ""})
        self.downloader.deadline = 0
        with self.assertRaises(DownloadError):
            self.downloader.result_url()

    def test_rate_limited_then_success(self):
        self.session.get.side_effect = [
            _response(429),
            _response(json_data={"resultUrl": "https://example.test/file.geojson"}),
        ]
        self.assertEqual(self.downloader.result_url(), "https://example.test/file.geojson")

    def test_all_retries_fail(self):
        self.session.get.return_value = _response(500)
        with self.assertRaises(DownloadError):
            self.downloader.result_url()
        self.assertEqual(self.session.get.call_count, self.downloader.max_retries)

    def test_timeouts_retried(self):
        self.session.get.side_effect = [
            requests.exceptions.Timeout(),
            _response(json_data={"resultUrl": "https://example.test/file.geojson"}),
        ]
        self.assertEqual(self.downloader.result_url(), "https://example.test/file.geojson")

    def test_client_error_not_retried(self):
        self.session.get.return_value = _response(404)
        with self.assertRaises(DownloadError):
            self.downloader.result_url()
        self.assertEqual(self.session.get.call_count, 1)

    def test_connection_error(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(DownloadError):
            self.downloader.result_url()

    def test_invalid_json(self):
        response = _response()
        response.json.side_effect = ValueError("not json")
        self.session.get.return_value = response
        with self.assertRaises(DownloadError):
            self.downloader.result_url()

    def test_non_object_json(self):
        for body in (["https://example.test/file.geojson"], "ready", 3):
            self.session.get.return_value = _response(json_data=body)
            with self.assertRaises(DownloadError):
                self.downloader.result_url()

    def test_null_json_keeps_polling(self):
        self.session.get.side_effect = [
            _response(json_data=None),
            _response(json_data={"resultUrl": "https://example.test/file.geojson"}),
        ]
        self.assertEqual(self.downloader.result_url(), "https://example.test/file.geojson")


class TestDownloadTravelways(unittest.TestCase):
    @patch("fetch.ExportDownloader")
    def test_uses_export_url(self, mock_downloader):
        mock_downloader.return_value.download.return_value = b"{}"
        self.assertEqual(download_travelways("https://example.test/export"), b"{}")
        mock_downloader.assert_called_once_with("https://example.test/export")


if __name__ == "__main__":
    unittest.main()
