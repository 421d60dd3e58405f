from unittest.mock import MagicMock, patch

import google_services
from workspace_config import ExportConfig


def test_key_file_credentials_impersonate_admin():
    config = ExportConfig(service_account_file='sa.json', admin_user_email='admin@example.com')
    with patch.object(google_services.service_account.Credentials, 'from_service_account_file') as from_file:
        creds = google_services.get_delegated_credentials(config)
    from_file.assert_called_once_with('sa.json', scopes=google_services.SCOPES)
    from_file.return_value.with_subject.assert_called_once_with('admin@example.com')
    assert creds is from_file.return_value.with_subject.return_value


def test_keyless_credentials_use_iam_signer():
    config = ExportConfig(admin_user_email='admin@example.com')
    ambient = MagicMock(service_account_email='runner@project.iam.gserviceaccount.com')
    with patch.object(google_services.google.auth, 'default', return_value=(ambient, 'project')), \
            patch.object(google_services.google.auth.iam, 'Signer') as signer, \
            patch.object(google_services.service_account, 'Credentials') as credentials:
        google_services.get_delegated_credentials(config)
    ambient.refresh.assert_called_once()
    args, kwargs = credentials.call_args
    assert args == (signer.return_value, 'runner@project.iam.gserviceaccount.com', google_services.TOKEN_URI)
    assert kwargs == {'scopes': google_services.SCOPES, 'subject': 'admin@example.com'}


def test_build_conversation_services():
    with patch.object(google_services, 'get_delegated_credentials', return_value='creds'), \
            patch.object(google_services, 'build') as build:
        services = google_services.build_conversation_services(ExportConfig())
    assert len(services) == 4
    assert [c.args[:2] for c in build.call_args_list] == [('vault', 'v1'), ('storage', 'v1'), ('sheets', 'v4'), ('drive', 'v3')]
    assert all(c.kwargs == {'credentials': 'creds', 'cache_discovery': False} for c in build.call_args_list)
