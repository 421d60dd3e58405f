import io
import sys
import time
import traceback
import zipfile
from collections import namedtuple
from datetime import datetime, timezone

from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload

import run_log
from google_services import build_conversation_services
from run_log import log_summary, setup_run_logging, close_run_logging
from sheet_output import SheetWriter
from transcript_parser import parse_transcript, transcript_rows, transcript_sheet_values
from workspace_config import ConfigError, ExportConfig

# ==============================================================================
# --- Constants ---
# ==============================================================================
CREATING = 'CREATING'
POLLING = 'POLLING'
COMPLETED = 'COMPLETED'
FAILED = 'FAILED'
TIMED_OUT = 'TIMED_OUT'
IN_PROGRESS = 'IN_PROGRESS'

DEFAULT_POLL_INTERVAL = 120
DEFAULT_MAX_CHECKS = 30

ARCHIVE_SUFFIXES = ('.zip',)
XML_SUFFIX = '.xml'
XML_MIME_TYPE = 'text/xml'

EXIT_OK, EXIT_FATAL, EXIT_TIMED_OUT = 0, 1, 2

PollResult = namedtuple('PollResult', 'outcome export checks')
ConversationExportResult = namedtuple('ConversationExportResult', 'outcome export_id sheets_created')


class ExportError(Exception):
    pass


class ExportCreationError(ExportError):
    pass


class ExportFailedError(ExportError):
    pass


# ==============================================================================
# --- Export Job ---
# ==============================================================================
def build_export_request(target_user, now=None):
    now = now or datetime.now(timezone.utc)
    return {
        'name': f"Gemini Export - {now.isoformat()}",
        'query': {
            'corpus': 'GEMINI',
            'dataScope': 'ALL_DATA',
            'searchMethod': 'ACCOUNT',
            'accountInfo': {'emails': [target_user]},
        },
        'exportOptions': {'geminiOptions': {'exportFormat': 'XML'}},
    }


class ExportJobClient(object):
    """Creates one Vault export and waits for it to finish.

    State goes CREATING -> POLLING -> COMPLETED | FAILED | TIMED_OUT. The wait
    blocks for up to max_checks * poll_interval seconds and cannot be resumed:
    running again creates a new export.
    """

    def __init__(self, vault_service, matter_id, poll_interval=DEFAULT_POLL_INTERVAL,
                 max_checks=DEFAULT_MAX_CHECKS, sleep=time.sleep):
        self.vault = vault_service
        self.matter_id = matter_id
        self.poll_interval = poll_interval
        self.max_checks = max_checks
        self.sleep = sleep
        self.state = None

    def create_export(self, target_user):
        self.state = CREATING
        body = build_export_request(target_user)
        try:
            export = self.vault.matters().exports().create(matterId=self.matter_id, body=body).execute()
        except HttpError as e:
            self.state = FAILED
            raise ExportCreationError(f"Failed to create export. Code: {getattr(e.resp, 'status', 'N/A')} | Response: {e}")
        export_id = export.get('id')
        if not export_id:
            self.state = FAILED
            raise ExportCreationError(f"Export created without an ID: {export}")
        log_summary(f"Export initiated successfully. Export ID: {export_id}")
        self.state = POLLING
        return export_id

    def get_export(self, export_id):
        return self.vault.matters().exports().get(matterId=self.matter_id, exportId=export_id).execute()

    def wait_for_completion(self, export_id):
        self.state = POLLING
        export = None
        for check in range(1, self.max_checks + 1):
            print(f"  Waiting {self.poll_interval} seconds before check #{check}...")
            self.sleep(self.poll_interval)
            try:
                export = self.get_export(export_id)
            except HttpError as e:
                log_summary(f"WARNING: Status check #{check} failed: {e}")
                continue
            status = export.get('status')
            print(f"    Current Status: {status}")
            if status == COMPLETED:
                self.state = COMPLETED
                return PollResult(COMPLETED, export, check)
            if status == FAILED:
                self.state = FAILED
                raise ExportFailedError(f"Export {export_id} failed on Google's side.")
        self.state = TIMED_OUT
        log_summary(f"Timed out waiting for export {export_id} after {self.max_checks} checks.")
        return PollResult(TIMED_OUT, export, self.max_checks)

    def run(self, target_user):
        export_id = self.create_export(target_user)
        return export_id, self.wait_for_completion(export_id)


# ==============================================================================
# --- Archive Download ---
# ==============================================================================
def is_archive(name):
    return name.lower().endswith(ARCHIVE_SUFFIXES)


class ArchiveFetcher(object):
    def __init__(self, storage_service):
        self.storage = storage_service

    def download(self, file_entry):
        request = self.storage.objects().get_media(bucket=file_entry['bucketName'], object=file_entry['objectName'])
        buffer = io.BytesIO()
        downloader = MediaIoBaseDownload(buffer, request)
        done = False
        while not done:
            _status, done = downloader.next_chunk()
        return buffer.getvalue()

    def unzip(self, data):
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            return [(info.filename, zf.read(info)) for info in zf.infolist() if not info.is_dir()]

    def fetch_archives(self, files):
        """(archive_name, members) for each archive in the manifest that downloads and unzips cleanly."""
        for file_entry in files:
            object_name = file_entry.get('objectName', '')
            file_name = object_name.split('/')[-1]
            if not is_archive(file_name):
                print(f"  Skipping auxiliary file: {file_name}")
                continue
            print(f"  Processing archive: {file_name}")
            try:
                data = self.download(file_entry)
            except HttpError as e:
                log_summary(f"ERROR downloading {file_name}: {e}")
                continue
            try:
                members = self.unzip(data)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
                log_summary(f"ERROR: Could not unzip {file_name}. Details: {e}")
                continue
            yield file_name, members


# ==============================================================================
# --- Pipeline ---
# ==============================================================================
def convert_xml_to_sheet(xml_bytes, config, writer):
    """Parse one XML transcript and write it as the target user's spreadsheet. Returns the sheet ID or None."""
    transcript = parse_transcript(xml_bytes.decode('utf-8'))
    rows = transcript_rows(transcript, config.sheet_cell_limit)
    if not rows:
        log_summary("Parsed XML but found no conversation data rows.")
        return None
    print(f"  Parsed {len(transcript.conversations)} conversations, {len(rows)} turns for {transcript.user_email}.")
    return writer.create_spreadsheet(config.target_user, transcript_sheet_values(rows), config.sheets_folder_id)


def process_archive(archive_name, members, config, writer):
    sheets_created = 0
    xml_members = [(name, data) for name, data in members if name.lower().endswith(XML_SUFFIX)]
    if not xml_members:
        log_summary(f"WARNING: Archive {archive_name} downloaded, but no XML file found inside.")
        return 0
    for member_name, data in xml_members:
        try:
            writer.upload_file(f"{config.target_user}{XML_SUFFIX}", data, config.xml_folder_id, XML_MIME_TYPE)
            print(f"  Starting conversion of {member_name} to Google Sheets...")
            if convert_xml_to_sheet(data, config, writer): sheets_created += 1
        except (HttpError, UnicodeDecodeError) as e:
            log_summary(f"ERROR converting {member_name} from {archive_name}: {e}")
        except Exception as e:
            log_summary(f"ERROR Unexpected while converting {member_name} from {archive_name}: {e}")
            traceback.print_exc()
    return sheets_created


def export_conversations(config, vault_service, storage_service, writer, sleep=time.sleep):
    log_summary(f"Starting GEMINI export for User: {config.target_user} and Matter ID: {config.matter_id}")
    client = ExportJobClient(vault_service, config.matter_id, poll_interval=config.poll_interval_seconds,
                             max_checks=config.max_poll_checks, sleep=sleep)
    export_id, result = client.run(config.target_user)
    if result.outcome == TIMED_OUT:
        return ConversationExportResult(TIMED_OUT, export_id, 0)

    files = (result.export.get('cloudStorageSink') or {}).get('files') or []
    if not files:
        log_summary("Export completed but contained no files.")
        return ConversationExportResult(COMPLETED, export_id, 0)

    log_summary(f"Export complete after {result.checks} checks. Found {len(files)} file(s).")
    sheets_created = 0
    for archive_name, members in ArchiveFetcher(storage_service).fetch_archives(files):
        sheets_created += process_archive(archive_name, members, config, writer)
    log_summary(f"Conversation Export: {sheets_created} sheet(s) created for {config.target_user}.")
    return ConversationExportResult(COMPLETED, export_id, sheets_created)


def main(environ=None):
    start_time = time.time()
    run_log.original_stdout.write("--- Gemini Conversation Exporter ---\n")
    run_log.original_stdout.write(f"Timestamp: {datetime.now().isoformat()}\n")
    try:
        config = ExportConfig.from_env(environ)
    except ConfigError as e:
        run_log.original_stdout.write(f"FATAL ERROR: {e}\n"); return EXIT_FATAL
    problems = config.problems('conversations')
    for line in config.describe('conversations'): run_log.original_stdout.write(line + "\n")
    run_log.original_stdout.write("-" * 70 + "\n")
    if problems:
        for problem in problems: run_log.original_stdout.write(f"FATAL ERROR: {problem}\n")
        run_log.original_stdout.write("FATAL: Config errors prevent script execution.\n")
        return EXIT_FATAL

    setup_run_logging("conversation_export", config.log_dir, console=config.detailed_console_logging)
    try:
        vault, storage, sheets, drive = build_conversation_services(config)
        result = export_conversations(config, vault, storage, SheetWriter(sheets, drive, dry_run=config.dry_run))
        if result.outcome == TIMED_OUT:
            log_summary(f"TIMED OUT: export {result.export_id} did not finish; no output was written.")
            run_log.original_stderr.write(f"Timed out waiting for export {result.export_id}.\n")
            status = EXIT_TIMED_OUT
        else:
            status = EXIT_OK
    except (ExportError, HttpError) as e:
        log_summary(f"CRITICAL ERROR: {e}")
        run_log.original_stderr.write(f"Error: {e}\n")
        status = EXIT_FATAL
    except Exception as e:
        log_summary(f"CRITICAL ERROR: {e}")
        traceback.print_exc()
        run_log.original_stderr.write(f"Error: {e}\n")
        status = EXIT_FATAL
    finally:
        close_run_logging()
    duration = time.time() - start_time
    run_log.original_stdout.write(f"\nTotal script execution time: {duration / 60:.2f} minutes ({duration:.2f} seconds).\n")
    return status


if __name__ == "__main__":
    sys.exit(main())
