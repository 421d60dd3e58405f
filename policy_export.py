import sys
import time
import traceback
from collections import namedtuple
from datetime import datetime

from googleapiclient.errors import HttpError

import run_log
from google_services import build_policy_services
from run_log import log_summary, setup_run_logging, close_run_logging
from sheet_output import SheetWriter
from workspace_config import ConfigError, ExportConfig

# ==============================================================================
# --- Constants ---
# ==============================================================================
POLICY_PAGE_SIZE = 100
MY_CUSTOMER = 'my_customer'
DEFAULT_POLICY_TYPE = 'ADMIN'
ROOT_ORG_UNIT_PATH = '/'
NO_POLICIES_ROW = ["No matching policies found"]

ORG_UNIT = 'orgUnit'
GROUP = 'group'

POLICY_COLUMNS = [
    ('name', "name"),
    ('org_unit', "policyQuery.orgUnit"),
    ('org_unit_path', "policyQuery.orgUnitPath"),
    ('sort_order', "policyQuery.sortOrder"),
    ('setting_type', "setting.type"),
    ('service_state', "setting.value.serviceState"),
    ('policy_type', "type"),
    ('group', "policyQuery.group"),
    ('group_email', "policyQuery.groupEmail"),
]
POLICY_HEADERS = [header for _field, header in POLICY_COLUMNS]
PolicyRow = namedtuple('PolicyRow', [field for field, _header in POLICY_COLUMNS])


class PolicyExportError(Exception):
    pass


# ==============================================================================
# --- Name Resolution ---
# ==============================================================================
class NameResolver(object):
    """Turns orgUnits/<id> and groups/<id> resource names into an org unit path or group email.

    Results are cached for the lifetime of the resolver, failures included: a
    lookup that fails caches the raw resource name so it is not retried.
    """

    def __init__(self, directory_service, customer_id):
        self.directory = directory_service
        self.customer_id = customer_id
        self.cache = {ORG_UNIT: {}, GROUP: {}}
        self.lookups = 0

    def resolve(self, kind, resource):
        if kind not in self.cache: raise ValueError(f"Unknown resource kind '{kind}'")
        if not resource: return ROOT_ORG_UNIT_PATH if kind == ORG_UNIT else ""
        cache = self.cache[kind]
        if resource in cache: return cache[resource]

        parts = resource.split('/')
        resource_id = parts[1] if len(parts) > 1 else ''
        if not resource_id: return resource

        self.lookups += 1
        try:
            if kind == ORG_UNIT:
                ou = self.directory.orgunits().get(customerId=self.customer_id, orgUnitPath=f"id:{resource_id}").execute()
                resolved = ou.get('orgUnitPath') or ROOT_ORG_UNIT_PATH
            else:
                group = self.directory.groups().get(groupKey=resource_id).execute()
                resolved = group.get('email') or resource
        except HttpError as e:
            log_summary(f"WARNING: Could not resolve {self.label(kind)} {resource_id}: {e}")
            resolved = resource
        except Exception as e:
            log_summary(f"WARNING: Unexpected error resolving {self.label(kind)} {resource_id}: {e}")
            traceback.print_exc()
            resolved = resource
        cache[resource] = resolved
        return resolved

    @staticmethod
    def label(kind):
        return 'OU' if kind == ORG_UNIT else 'Group'

    def resolve_org_unit(self, resource):
        return self.resolve(ORG_UNIT, resource)

    def resolve_group(self, resource):
        return self.resolve(GROUP, resource)


# ==============================================================================
# --- Fetching ---
# ==============================================================================
def get_customer_id(directory_service):
    try: return directory_service.customers().get(customerKey=MY_CUSTOMER).execute()['id']
    except HttpError as e: raise PolicyExportError(f"Could not look up customer ID: {e}")


class PolicyFetcher(object):
    def __init__(self, cloudidentity_service, page_size=POLICY_PAGE_SIZE):
        self.cloudidentity = cloudidentity_service
        self.page_size = page_size

    def fetch_all(self, filter_expression):
        """Every policy matching the filter, all pages. Any failed page aborts the whole fetch."""
        policies = []; page_token = None; page = 0
        while True:
            page += 1
            params = {'filter': filter_expression, 'pageSize': self.page_size}
            if page_token: params['pageToken'] = page_token
            try:
                result = self.cloudidentity.policies().list(**params).execute()
            except HttpError as e:
                status = getattr(e.resp, 'status', 'N/A')
                raise PolicyExportError(f"API Error ({status}) on policy page {page}: {e}")
            policies.extend(result.get('policies', []))
            print(f"    Fetched {len(policies)} policies so far (page {page})...")
            page_token = result.get('nextPageToken')
            if not page_token: break
        return policies


# ==============================================================================
# --- Row Building ---
# ==============================================================================
def build_policy_row(policy, resolver):
    pq = policy.get('policyQuery') or {}
    setting = policy.get('setting') or {}
    ou_id = pq.get('orgUnit') or ""
    group_id = pq.get('group') or ""
    return PolicyRow(
        name=policy.get('name') or "",
        org_unit=ou_id,
        org_unit_path=resolver.resolve_org_unit(ou_id) if ou_id else "",
        sort_order=pq.get('sortOrder') or "",
        setting_type=setting.get('type') or "",
        service_state=(setting.get('value') or {}).get('serviceState') or "",
        policy_type=policy.get('type') or DEFAULT_POLICY_TYPE,
        group=group_id,
        group_email=resolver.resolve_group(group_id) if group_id else "",
    )


def sort_policy_rows(rows):
    return sorted(rows, key=lambda row: (row.org_unit_path, row.setting_type, row.group_email))


def policy_sheet_values(rows):
    if not rows: return [list(NO_POLICIES_ROW)]
    return [list(POLICY_HEADERS)] + [list(row) for row in rows]


# ==============================================================================
# --- Pipeline ---
# ==============================================================================
def export_policies(config, directory_service, cloudidentity_service, writer):
    """Write every matching policy to the first sheet of the configured spreadsheet.

    Returns the number of policy rows written.
    """
    log_summary(f"Policy Export: Starting with filter {config.policy_filter}")
    customer_id = get_customer_id(directory_service)
    print(f"  Customer ID: {customer_id}")

    policies = PolicyFetcher(cloudidentity_service).fetch_all(config.policy_filter)
    if not policies:
        log_summary("Policy Export: No matching policies found.")
        writer.overwrite_first_sheet(config.spreadsheet_id, policy_sheet_values([]))
        return 0

    resolver = NameResolver(directory_service, customer_id)
    rows = sort_policy_rows([build_policy_row(p, resolver) for p in policies])
    print(f"  Resolved names with {resolver.lookups} directory lookups.")
    writer.overwrite_first_sheet(config.spreadsheet_id, policy_sheet_values(rows))
    log_summary(f"Policy Export: Successfully wrote {len(rows)} rows.")
    return len(rows)


def main(environ=None):
    start_time = time.time()
    run_log.original_stdout.write("--- AI Settings Policy Exporter ---\n")
    run_log.original_stdout.write(f"Timestamp: {datetime.now().isoformat()}\n")
    try:
        config = ExportConfig.from_env(environ)
    except ConfigError as e:
        run_log.original_stdout.write(f"FATAL ERROR: {e}\n"); return 1
    problems = config.problems('policies')
    for line in config.describe('policies'): run_log.original_stdout.write(line + "\n")
    run_log.original_stdout.write("-" * 70 + "\n")
    if problems:
        for problem in problems: run_log.original_stdout.write(f"FATAL ERROR: {problem}\n")
        run_log.original_stdout.write("FATAL: Config errors prevent script execution.\n")
        return 1

    setup_run_logging("policy_export", config.log_dir, console=config.detailed_console_logging)
    try:
        directory, cloudidentity, sheets, drive = build_policy_services(config)
        export_policies(config, directory, cloudidentity, SheetWriter(sheets, drive, dry_run=config.dry_run))
        status = 0
    except (PolicyExportError, HttpError) as e:
        log_summary(f"Script failed: {e}")
        run_log.original_stderr.write(f"Error: {e}\n")
        status = 1
    except Exception as e:
        log_summary(f"Script failed: {e}")
        traceback.print_exc()
        run_log.original_stderr.write(f"Error: {e}\n")
        status = 1
    finally:
        close_run_logging()
    duration = time.time() - start_time
    run_log.original_stdout.write(f"\nTotal script execution time: {duration:.2f} seconds.\n")
    return status


if __name__ == "__main__":
    sys.exit(main())
