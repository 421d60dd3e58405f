import google.auth
import google.auth.iam
import google.auth.transport.requests
from google.oauth2 import service_account
from googleapiclient.discovery import build

# ==============================================================================
# --- Combined Scopes ---
# ==============================================================================
SCOPES = [
    'https://www.googleapis.com/auth/admin.directory.orgunit.readonly',
    'https://www.googleapis.com/auth/admin.directory.group.readonly',
    'https://www.googleapis.com/auth/admin.directory.customer.readonly',
    'https://www.googleapis.com/auth/cloud-identity.policies.readonly',
    'https://www.googleapis.com/auth/ediscovery',
    'https://www.googleapis.com/auth/devstorage.read_only',
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/drive',
]
TOKEN_URI = 'https://oauth2.googleapis.com/token'


def get_delegated_credentials(config, scopes=None):
    """Credentials that act as the configured admin user.

    With SERVICE_ACCOUNT_FILE set the key file is used directly. Without it the
    ambient service account is used keyless: the IAM API signs the delegation
    assertion on its behalf.
    """
    scopes = scopes or SCOPES
    if config.service_account_file:
        creds = service_account.Credentials.from_service_account_file(config.service_account_file, scopes=scopes)
        return creds.with_subject(config.admin_user_email)

    creds, _project_id = google.auth.default(scopes=['https://www.googleapis.com/auth/cloud-platform'])
    auth_req = google.auth.transport.requests.Request()
    creds.refresh(auth_req)
    signer = google.auth.iam.Signer(auth_req, creds, creds.service_account_email)
    return service_account.Credentials(signer, creds.service_account_email, TOKEN_URI,
                                       scopes=scopes, subject=config.admin_user_email)


def build_service(name, version, credentials):
    return build(name, version, credentials=credentials, cache_discovery=False)


def build_policy_services(config):
    creds = get_delegated_credentials(config)
    print("Building services (Admin SDK, Cloud Identity, Sheets, Drive)...")
    return (build_service('admin', 'directory_v1', creds), build_service('cloudidentity', 'v1', creds),
            build_service('sheets', 'v4', creds), build_service('drive', 'v3', creds))


def build_conversation_services(config):
    creds = get_delegated_credentials(config)
    print("Building services (Vault, Cloud Storage, Sheets, Drive)...")
    return (build_service('vault', 'v1', creds), build_service('storage', 'v1', creds),
            build_service('sheets', 'v4', creds), build_service('drive', 'v3', creds))
