"""
Tests for the source HTTP client and query URL building.
"""

from unittest.mock import patch

import pytest
import requests
import responses

from collector.fetchers.source_client import SourceClient, SourceFetchError, build_url

ENDPOINT = "https://source-a.example.com/api.php/provide/vod/"


class TestBuildUrl:
    def test_list_page(self):
        assert build_url(ENDPOINT, action="list", page=2, category_id=13) == (
            f"{ENDPOINT}?ac=list&pg=2&t=13"
        )

    def test_detail_ids(self):
        assert build_url(ENDPOINT, action="detail", ids=[1, 2, 3]) == f"{ENDPOINT}?ac=detail&ids=1%2C2%2C3"

    def test_search_and_hours(self):
        url = build_url(ENDPOINT, action="detail", keyword="三体", hours=24)
        assert "wd=%E4%B8%89%E4%BD%93" in url
        assert "h=24" in url

    def test_existing_query_kept(self):
        url = build_url(f"{ENDPOINT}?token=abc&ac=videolist", action="detail", page=1)
        assert url == f"{ENDPOINT}?token=abc&ac=detail&pg=1"

    def test_empty_category_omitted(self):
        assert "t=" not in build_url(ENDPOINT, category_id="")


class TestSourceClient:
    @responses.activate
    def test_fetch_success(self):
        responses.add(responses.GET, ENDPOINT, body=b'{"code": 1}')

        result = SourceClient(max_retries=0).fetch(ENDPOINT)

        assert result.success
        assert result.status_code == 200
        assert result.content == b'{"code": 1}'
        assert result.elapsed_ms >= 0

    @responses.activate
    def test_client_error_not_retried(self):
        responses.add(responses.GET, ENDPOINT, status=404)

        result = SourceClient(max_retries=3, backoff=0).fetch(ENDPOINT)

        assert not result.success
        assert result.status_code == 404
        assert result.error == "HTTP 404"
        assert len(responses.calls) == 1

    @responses.activate
    def test_server_error_retried(self):
        responses.add(responses.GET, ENDPOINT, status=503)
        responses.add(responses.GET, ENDPOINT, body=b"ok")

        result = SourceClient(max_retries=2, backoff=0).fetch(ENDPOINT)

        assert result.success
        assert len(responses.calls) == 2

    @responses.activate
    def test_timeout_flagged(self):
        responses.add(responses.GET, ENDPOINT, body=requests.exceptions.ReadTimeout())

        result = SourceClient(max_retries=1, backoff=0).fetch(ENDPOINT)

        assert not result.success
        assert result.timed_out
        assert len(responses.calls) == 2

    @responses.activate
    def test_backoff_doubles(self):
        responses.add(responses.GET, ENDPOINT, body=requests.exceptions.ConnectionError())

        with patch("collector.fetchers.source_client.time.sleep") as sleep:
            SourceClient(max_retries=2, backoff=0.5).fetch(ENDPOINT)

        assert [call.args[0] for call in sleep.call_args_list] == [0.5, 1.0]

    @responses.activate
    def test_get_raises(self):
        responses.add(responses.GET, ENDPOINT, body=requests.exceptions.ConnectTimeout())

        with pytest.raises(SourceFetchError) as exc_info:
            SourceClient(max_retries=0).get(ENDPOINT)

        assert exc_info.value.timed_out

    @responses.activate
    def test_user_agent_sent(self):
        responses.add(responses.GET, ENDPOINT, body=b"ok")

        with SourceClient(max_retries=0, user_agent="collector-test/1.0") as client:
            client.get(ENDPOINT)

        assert responses.calls[0].request.headers["User-Agent"] == "collector-test/1.0"
