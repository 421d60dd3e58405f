import io
import random
from datetime import datetime

from googleapiclient.http import MediaIoBaseUpload
from gspread.utils import rowcol_to_a1

from run_log import log_summary

SPREADSHEET_MIME_TYPE = 'application/vnd.google-apps.spreadsheet'
DEFAULT_TAB_TITLE = 'Sheet1'


def quote_tab(tab_title):
    """Tab title quoted for A1 notation; an embedded quote is doubled."""
    return "'" + tab_title.replace("'", "''") + "'"


def block_range(tab_title, values):
    """A1 range covering a rectangular block of values written from A1."""
    width = max(len(row) for row in values)
    return f"{quote_tab(tab_title)}!A1:{rowcol_to_a1(len(values), width)}"


class SheetWriter(object):
    """Writes rectangular blocks of values to Google Sheets and places files in Drive folders.

    Overwriting by name is find-and-trash followed by create; two runs racing on
    the same name can leave either result.
    """

    def __init__(self, sheets_service, drive_service, dry_run=False):
        self.sheets = sheets_service
        self.drive = drive_service
        self.dry_run = dry_run

    # --- Existing spreadsheet ---
    def first_tab(self, spreadsheet_id):
        meta = self.sheets.spreadsheets().get(spreadsheetId=spreadsheet_id, fields='sheets.properties').execute()
        sheets = meta.get('sheets', [])
        if not sheets: return DEFAULT_TAB_TITLE, 0
        props = sheets[0].get('properties', {})
        return props.get('title', DEFAULT_TAB_TITLE), props.get('sheetId', 0)

    def write_values(self, spreadsheet_id, tab_title, values):
        if not values: return 0
        self.sheets.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id, range=block_range(tab_title, values),
            valueInputOption='RAW', body={'values': values}).execute()
        return len(values)

    def overwrite_first_sheet(self, spreadsheet_id, values):
        if self.dry_run:
            print(f"  [DRY RUN] Would clear first sheet of {spreadsheet_id} and write {len(values)} rows.")
            return len(values)
        tab_title, _sheet_id = self.first_tab(spreadsheet_id)
        print(f"  Clearing sheet '{tab_title}' in spreadsheet {spreadsheet_id}...")
        self.sheets.spreadsheets().values().clear(spreadsheetId=spreadsheet_id, range=quote_tab(tab_title), body={}).execute()
        written = self.write_values(spreadsheet_id, tab_title, values)
        print(f"    Wrote {written} rows to '{tab_title}'.")
        return written

    # --- Drive files ---
    def find_files_by_name(self, name, folder_id):
        safe_name = name.replace('\\', '\\\\').replace("'", "\\'")
        query = f"name = '{safe_name}' and '{folder_id}' in parents and trashed = false"
        found = []; page_token = None
        while True:
            res = self.drive.files().list(q=query, fields='nextPageToken,files(id,name)', pageToken=page_token,
                                          supportsAllDrives=True, includeItemsFromAllDrives=True).execute()
            found.extend(res.get('files', []))
            page_token = res.get('nextPageToken')
            if not page_token: break
        return found

    def trash_existing(self, name, folder_id):
        if self.dry_run:
            print(f"  [DRY RUN] Would trash existing files named '{name}' in folder {folder_id}.")
            return 0
        existing = self.find_files_by_name(name, folder_id)
        for f in existing:
            self.drive.files().update(fileId=f['id'], body={'trashed': True}, supportsAllDrives=True).execute()
            log_summary(f"Deleted existing old file: {name} (ID: {f['id']})")
        return len(existing)

    def move_to_folder(self, file_id, folder_id):
        meta = self.drive.files().get(fileId=file_id, fields='parents', supportsAllDrives=True).execute()
        previous = ','.join(meta.get('parents', []))
        self.drive.files().update(fileId=file_id, addParents=folder_id, removeParents=previous,
                                  fields='id, parents', supportsAllDrives=True).execute()

    def upload_file(self, name, data, folder_id, mimetype='application/octet-stream'):
        if self.dry_run:
            print(f"  [DRY RUN] Would upload '{name}' ({len(data)} bytes) to folder {folder_id}.")
            return f"dry_run_upload_id_{random.randint(1000, 9999)}"
        self.trash_existing(name, folder_id)
        metadata = {'name': name, 'parents': [folder_id],
                    'description': f'Uploaded on {datetime.now().isoformat()}'}
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mimetype, resumable=False)
        print(f"  Uploading '{name}' ({len(data) / 1024 / 1024:.2f} MB, type: {mimetype}) to folder {folder_id}...")
        created = self.drive.files().create(body=metadata, media_body=media, supportsAllDrives=True,
                                            fields='id, name, webViewLink').execute()
        log_summary(f"Upload: Saved '{created.get('name', name)}' (ID: {created.get('id')}) to folder {folder_id}.")
        return created.get('id')

    # --- New spreadsheet ---
    def format_header(self, spreadsheet_id, sheet_id, width):
        requests = [
            {'updateSheetProperties': {
                'properties': {'sheetId': sheet_id, 'gridProperties': {'frozenRowCount': 1}},
                'fields': 'gridProperties.frozenRowCount'}},
            {'repeatCell': {
                'range': {'sheetId': sheet_id, 'startRowIndex': 0, 'endRowIndex': 1, 'startColumnIndex': 0, 'endColumnIndex': width},
                'cell': {'userEnteredFormat': {'textFormat': {'bold': True}}},
                'fields': 'userEnteredFormat.textFormat.bold'}},
        ]
        self.sheets.spreadsheets().batchUpdate(spreadsheetId=spreadsheet_id, body={'requests': requests}).execute()

    def create_spreadsheet(self, title, values, folder_id):
        if self.dry_run:
            print(f"  [DRY RUN] Would create spreadsheet '{title}' with {len(values)} rows in folder {folder_id}.")
            return f"dry_run_sheet_id_{random.randint(1000, 9999)}"
        self.trash_existing(title, folder_id)
        body = {'properties': {'title': title}, 'sheets': [{'properties': {'title': DEFAULT_TAB_TITLE}}]}
        created = self.sheets.spreadsheets().create(body=body, fields='spreadsheetId,sheets.properties').execute()
        spreadsheet_id = created['spreadsheetId']
        sheet_props = (created.get('sheets') or [{}])[0].get('properties', {})
        tab_title = sheet_props.get('title', DEFAULT_TAB_TITLE); sheet_id = sheet_props.get('sheetId', 0)
        self.write_values(spreadsheet_id, tab_title, values)
        self.format_header(spreadsheet_id, sheet_id, len(values[0]))
        self.move_to_folder(spreadsheet_id, folder_id)
        log_summary(f"Created Google Sheet '{title}' (ID: {spreadsheet_id}) with {len(values) - 1} rows in folder {folder_id}.")
        return spreadsheet_id
