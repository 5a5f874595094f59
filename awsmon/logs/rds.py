"""RDS log files API (DescribeDBLogFiles / DownloadDBLogFilePortion)."""

import logging
from typing import List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import LogSourceError


class RdsLogSource:
    """
    Log source backed by the RDS API.

    An incremental read follows AdditionalDataPending until the file is
    exhausted or MAX_PAGES is reached; in the latter case the returned
    pending flag tells the caller to resume from the marker on its next pass.
    """

    # stop following a very fast-growing file after this many pages
    MAX_PAGES = 100

    def __init__(self, rds_api, logger: Optional[logging.Logger] = None):
        self.api = rds_api
        self.logger = logger or logging.getLogger("awsmon.logs.rds")

    def list_log_files(self, instance_id: str) -> List[Tuple[str, int]]:
        files: List[Tuple[str, int]] = []
        try:
            paginator = self.api.get_paginator("describe_db_log_files")
            for page in paginator.paginate(DBInstanceIdentifier=instance_id):
                for f in page.get("DescribeDBLogFiles", []):
                    files.append((f["LogFileName"], int(f.get("LastWritten", 0))))
        except (ClientError, BotoCoreError) as e:
            raise LogSourceError(f"failed to describe log files of {instance_id}: {e}") from e
        return files

    def download_portion(self, instance_id: str, file_name: str, marker: Optional[str] = None,
                         number_of_lines: Optional[int] = None) -> Tuple[str, str, bool]:
        if (marker is None) == (number_of_lines is None):
            raise ValueError("exactly one of marker or number_of_lines must be given")

        request = {"DBInstanceIdentifier": instance_id, "LogFileName": file_name}
        if number_of_lines is not None:
            request["NumberOfLines"] = number_of_lines
            response = self._download(request)
            return response.get("LogFileData") or "", response.get("Marker") or "", False

        chunks = []
        pending = False
        for _ in range(self.MAX_PAGES):
            request["Marker"] = marker
            response = self._download(request)
            chunks.append(response.get("LogFileData") or "")
            marker = response.get("Marker") or marker
            pending = bool(response.get("AdditionalDataPending"))
            if not pending:
                break
        else:
            self.logger.info(f"{file_name}: more data pending, continuing on the next pass")
        return "".join(chunks), marker, pending

    def _download(self, request):
        try:
            return self.api.download_db_log_file_portion(**request)
        except (ClientError, BotoCoreError) as e:
            raise LogSourceError(f"failed to download file {request['LogFileName']}: {e}") from e
