"""Unit tests for the RDS log files API wrapper"""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from awsmon.errors import LogSourceError
from awsmon.logs import RdsLogSource


def client_error(operation):
    return ClientError({"Error": {"Code": "DBInstanceNotFound", "Message": "not found"}}, operation)


@pytest.fixture
def rds_api():
    return MagicMock()


@pytest.fixture
def source(rds_api):
    return RdsLogSource(rds_api)


class TestListLogFiles:
    """Test DescribeDBLogFiles pagination"""

    def test_flattens_pages(self, rds_api, source):
        rds_api.get_paginator.return_value.paginate.return_value = [
            {"DescribeDBLogFiles": [{"LogFileName": "error/postgresql.log.1", "LastWritten": 100}]},
            {"DescribeDBLogFiles": [{"LogFileName": "error/postgresql.log.2", "LastWritten": 200}]},
        ]

        files = source.list_log_files("orders")

        assert files == [("error/postgresql.log.1", 100), ("error/postgresql.log.2", 200)]
        rds_api.get_paginator.assert_called_once_with("describe_db_log_files")
        rds_api.get_paginator.return_value.paginate.assert_called_once_with(DBInstanceIdentifier="orders")

    def test_api_error(self, rds_api, source):
        rds_api.get_paginator.return_value.paginate.side_effect = client_error("DescribeDBLogFiles")

        with pytest.raises(LogSourceError):
            source.list_log_files("orders")


class TestDownloadPortion:
    """Test DownloadDBLogFilePortion calls"""

    def test_tail_read_sends_number_of_lines(self, rds_api, source):
        rds_api.download_db_log_file_portion.return_value = {
            "LogFileData": "last\n", "Marker": "4:1234", "AdditionalDataPending": False,
        }

        assert source.download_portion("orders", "error/a.log", number_of_lines=1) == ("last\n", "4:1234", False)
        rds_api.download_db_log_file_portion.assert_called_once_with(
            DBInstanceIdentifier="orders", LogFileName="error/a.log", NumberOfLines=1,
        )

    def test_incremental_read_follows_pending_data(self, rds_api, source):
        rds_api.download_db_log_file_portion.side_effect = [
            {"LogFileData": "a\nb\n", "Marker": "m2", "AdditionalDataPending": True},
            {"LogFileData": "c\n", "Marker": "m3", "AdditionalDataPending": False},
        ]

        text, marker, pending = source.download_portion("orders", "error/a.log", marker="m1")

        assert (text, marker, pending) == ("a\nb\nc\n", "m3", False)
        markers = [c.kwargs["Marker"] for c in rds_api.download_db_log_file_portion.call_args_list]
        assert markers == ["m1", "m2"]

    def test_page_limit(self, rds_api, source):
        source.MAX_PAGES = 3
        rds_api.download_db_log_file_portion.side_effect = [
            {"LogFileData": "x\n", "Marker": f"m{i}", "AdditionalDataPending": True} for i in range(1, 4)
        ]

        text, marker, pending = source.download_portion("orders", "error/a.log", marker="m0")

        assert text == "x\n" * 3
        assert marker == "m3"
        assert pending is True
        assert rds_api.download_db_log_file_portion.call_count == 3

    def test_empty_response_keeps_marker(self, rds_api, source):
        rds_api.download_db_log_file_portion.return_value = {"AdditionalDataPending": False}

        assert source.download_portion("orders", "error/a.log", marker="m1") == ("", "m1", False)

    @pytest.mark.parametrize("kwargs", [{}, {"marker": "m", "number_of_lines": 1}])
    def test_exactly_one_of_marker_or_lines(self, source, kwargs):
        with pytest.raises(ValueError):
            source.download_portion("orders", "error/a.log", **kwargs)

    def test_api_error(self, rds_api, source):
        rds_api.download_db_log_file_portion.side_effect = client_error("DownloadDBLogFilePortion")

        with pytest.raises(LogSourceError):
            source.download_portion("orders", "error/a.log", marker="m1")
