import os

# ==============================================================================
# --- Defaults ---
# ==============================================================================
DEFAULT_POLICY_FILTER = "setting.type.matches('gemini_app|notebooklm|ai_studio')"
DEFAULT_POLL_INTERVAL_SECONDS = 120
DEFAULT_MAX_POLL_CHECKS = 30
DEFAULT_SHEET_CELL_LIMIT = 49000
DEFAULT_LOG_DIR = "./logs"

PLACEHOLDER_VALUES = {'', 'x'}
TRUE_VALUES = {'1', 'true', 'yes', 'on'}

REQUIRED_SETTINGS = {
    'policies': ['ADMIN_USER_EMAIL', 'SPREADSHEET_ID'],
    'conversations': ['ADMIN_USER_EMAIL', 'MATTER_ID', 'TARGET_USER', 'XML_FOLDER_ID', 'SHEETS_FOLDER_ID'],
}


class ConfigError(Exception):
    pass


def _as_bool(value, default):
    if value is None or value.strip() == '': return default
    return value.strip().lower() in TRUE_VALUES


def _as_int(name, value, default):
    if value is None or value.strip() == '': return default
    try: return int(value)
    except ValueError: raise ConfigError(f"{name} must be an integer, got '{value}'")


class ExportConfig(object):
    """Settings for one run of either export script.

    Built once at startup and handed to each component; nothing reads the
    environment after that.
    """

    def __init__(self, service_account_file=None, admin_user_email=None, spreadsheet_id=None,
                 policy_filter=DEFAULT_POLICY_FILTER, matter_id=None, target_user=None,
                 xml_folder_id=None, sheets_folder_id=None,
                 poll_interval_seconds=DEFAULT_POLL_INTERVAL_SECONDS, max_poll_checks=DEFAULT_MAX_POLL_CHECKS,
                 sheet_cell_limit=DEFAULT_SHEET_CELL_LIMIT, dry_run=False,
                 log_dir=DEFAULT_LOG_DIR, detailed_console_logging=True):
        self.service_account_file = service_account_file
        self.admin_user_email = admin_user_email
        self.spreadsheet_id = spreadsheet_id
        self.policy_filter = policy_filter
        self.matter_id = matter_id
        self.target_user = target_user
        self.xml_folder_id = xml_folder_id
        self.sheets_folder_id = sheets_folder_id
        self.poll_interval_seconds = poll_interval_seconds
        self.max_poll_checks = max_poll_checks
        self.sheet_cell_limit = sheet_cell_limit
        self.dry_run = dry_run
        self.log_dir = log_dir
        self.detailed_console_logging = detailed_console_logging

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        get = lambda key: (env.get(key) or '').strip() or None
        return cls(
            service_account_file=get('SERVICE_ACCOUNT_FILE'),
            admin_user_email=get('ADMIN_USER_EMAIL'),
            spreadsheet_id=get('SPREADSHEET_ID'),
            policy_filter=get('POLICY_FILTER') or DEFAULT_POLICY_FILTER,
            matter_id=get('MATTER_ID'),
            target_user=get('TARGET_USER'),
            xml_folder_id=get('XML_FOLDER_ID'),
            sheets_folder_id=get('SHEETS_FOLDER_ID'),
            poll_interval_seconds=_as_int('POLL_INTERVAL_SECONDS', env.get('POLL_INTERVAL_SECONDS'), DEFAULT_POLL_INTERVAL_SECONDS),
            max_poll_checks=_as_int('MAX_POLL_CHECKS', env.get('MAX_POLL_CHECKS'), DEFAULT_MAX_POLL_CHECKS),
            sheet_cell_limit=_as_int('SHEET_CELL_LIMIT', env.get('SHEET_CELL_LIMIT'), DEFAULT_SHEET_CELL_LIMIT),
            dry_run=_as_bool(env.get('DRY_RUN'), False),
            log_dir=get('LOG_DIR') or DEFAULT_LOG_DIR,
            detailed_console_logging=_as_bool(env.get('DETAILED_CONSOLE_LOGGING'), True),
        )

    def setting(self, name):
        return getattr(self, name.lower())

    def problems(self, pipeline):
        if pipeline not in REQUIRED_SETTINGS: raise ConfigError(f"Unknown pipeline '{pipeline}'")
        found = []
        for name in REQUIRED_SETTINGS[pipeline]:
            value = self.setting(name)
            if value is None or str(value).strip() in PLACEHOLDER_VALUES:
                found.append(f"{name} missing/placeholder.")
        if self.service_account_file and not os.path.exists(self.service_account_file):
            found.append(f"SERVICE_ACCOUNT_FILE '{self.service_account_file}' not found.")
        if self.max_poll_checks < 1: found.append("MAX_POLL_CHECKS must be at least 1.")
        if self.poll_interval_seconds < 0: found.append("POLL_INTERVAL_SECONDS cannot be negative.")
        if self.sheet_cell_limit < 1: found.append("SHEET_CELL_LIMIT must be positive.")
        return found

    def describe(self, pipeline):
        lines = [f"OPERATION MODE: {'DRY RUN' if self.dry_run else 'LIVE RUN'}",
                 f"Service Account: {self.service_account_file or 'keyless (application default credentials)'}",
                 f"Admin User for Impersonation: {self.admin_user_email}"]
        if pipeline == 'policies':
            lines += [f"Spreadsheet ID: {self.spreadsheet_id}", f"Policy Filter: {self.policy_filter}"]
        else:
            lines += [f"Matter ID: {self.matter_id}, Target User: {self.target_user}",
                      f"XML Folder ID: {self.xml_folder_id}, Sheets Folder ID: {self.sheets_folder_id}",
                      f"Polling: {self.max_poll_checks} checks every {self.poll_interval_seconds}s",
                      f"Sheet Cell Limit: {self.sheet_cell_limit}"]
        lines.append(f"Log Directory: {self.log_dir}")
        return lines
