import os
import sys
import traceback
from datetime import datetime

LOG_FILE_ENCODING = 'utf-8'

original_stdout = sys.stdout; original_stderr = sys.stderr
detailed_log_file_handler = None; summary_log_file_handler = None; current_run_id = None


class Tee(object):
    def __init__(self, *files): self.files = files
    def write(self, obj):
        for f_idx, f_obj in enumerate(self.files):
            try: f_obj.write(obj); f_obj.flush()
            except (OSError, ValueError) as e:
                if f_obj is not original_stdout and f_obj is not original_stderr: original_stdout.write(f"Tee write error to file {f_idx}: {e}\n")
    def flush(self):
        for f_obj in self.files:
            try: f_obj.flush()
            except (OSError, ValueError) as e:
                if f_obj is not original_stdout and f_obj is not original_stderr: original_stdout.write(f"Tee flush error: {e}\n")


def setup_run_logging(run_name, log_dir, console=True):
    """Open the detailed and summary logs for one run and tee stdout/stderr into the detailed one."""
    global detailed_log_file_handler, summary_log_file_handler, current_run_id
    current_run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    detailed_log_path = os.path.join(log_dir, f"{run_name}_{current_run_id}_detailed.log")
    summary_log_path = os.path.join(log_dir, f"{run_name}_{current_run_id}_summary.log")
    try:
        os.makedirs(log_dir, exist_ok=True)
        detailed_log_file_handler = open(detailed_log_path, 'w', encoding=LOG_FILE_ENCODING, buffering=1)
        summary_log_file_handler = open(summary_log_path, 'w', encoding=LOG_FILE_ENCODING, buffering=1)
        if console: sys.stdout = Tee(original_stdout, detailed_log_file_handler)
        else: sys.stdout = Tee(detailed_log_file_handler)
        sys.stderr = Tee(original_stderr, detailed_log_file_handler)
        print(f"--- LOGGING INITIALIZED for {run_name} (Run ID: {current_run_id}) ---")
        print(f"Detailed log: {detailed_log_path}"); print(f"Summary log: {summary_log_path}")
        log_summary(f"--- SUMMARY LOG for {run_name} (Run ID: {current_run_id}) ---")
        return detailed_log_path, summary_log_path
    except OSError as e:
        original_stdout.write(f"WARNING: Could not set up log files for {run_name}: {e}\nContinuing with console output only.\n")
        traceback.print_exc(file=original_stderr)
        _close_handlers()
        sys.stdout = original_stdout; sys.stderr = original_stderr
        return None, None


def log_summary(message):
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S"); full_message = f"[{timestamp}] {message}"
    if summary_log_file_handler:
        try: summary_log_file_handler.write(full_message + "\n"); summary_log_file_handler.flush()
        except (OSError, ValueError) as e: original_stdout.write(f"Error writing to summary log: {e}\n")
    print(f"SUMMARY: {message}")


def _close_handlers():
    global detailed_log_file_handler, summary_log_file_handler
    for handler in (detailed_log_file_handler, summary_log_file_handler):
        if handler:
            try: handler.flush(); handler.close()
            except (OSError, ValueError) as e: original_stdout.write(f"Error closing log file: {e}\n")
    detailed_log_file_handler = None; summary_log_file_handler = None


def close_run_logging():
    global current_run_id
    if summary_log_file_handler:
        log_summary("--- End of Run Log Session ---")
    if sys.stdout is not original_stdout and hasattr(sys.stdout, 'flush'): sys.stdout.flush()
    if sys.stderr is not original_stderr and hasattr(sys.stderr, 'flush'): sys.stderr.flush()
    sys.stdout = original_stdout
    sys.stderr = original_stderr
    _close_handlers()
    current_run_id = None
