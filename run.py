# run.py
# Description: Entry point for running the incident sync client from a source checkout.
#
# Imports
import sys
from pathlib import Path
#
# Local Imports
# --- Add project root to sys.path ---
project_dir = Path(__file__).parent.resolve()
sys.path.insert(0, str(project_dir))
try:
    from incident_sync.app import main
except ModuleNotFoundError as e:
    print(f"ERROR: run.py: Failed to import from incident_sync package.")
    print(f"       Ensure '{project_dir}' contains 'incident_sync' and its dependencies are installed.")
    print(f"       Original error: {e}")
    sys.exit(1)
#
#######################################################################################################################
#
# Functions:

if __name__ == "__main__":
    main()

#
# End of run.py
#######################################################################################################################
