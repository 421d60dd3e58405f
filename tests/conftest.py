import httplib2
import pytest
from googleapiclient.errors import HttpError
from unittest.mock import MagicMock

from sheet_output import SheetWriter
from workspace_config import ExportConfig


@pytest.fixture
def make_http_error():
    def _make(status, content=b'{"error": {"message": "backend error"}}'):
        return HttpError(httplib2.Response({'status': status}), content)
    return _make


@pytest.fixture
def config(tmp_path):
    return ExportConfig(admin_user_email='admin@example.com', spreadsheet_id='sheet-123',
                        matter_id='matter-1', target_user='alice@example.com',
                        xml_folder_id='xml-folder', sheets_folder_id='sheets-folder',
                        poll_interval_seconds=0, log_dir=str(tmp_path / 'logs'))


@pytest.fixture
def writer():
    return MagicMock(spec=SheetWriter)
