"""
CLI tool for admin tasks: client keys, usage statistics and billing reports.
Usage:
  python manage.py <command> [options]

Commands:
  list-clients
  client-stats
  generate-key [plan]
  stats <client_id> [days]
  report <client_id> <year> <month> [output_file]
"""
import json
import sys

from config.log_config import configure_logging
from config.settings import CLIENTS_FILE
from db.ledger import create_ledger
from services import report_service
from services.client_registry import ClientRegistry, generate_api_key, key_prefix


def _registry() -> ClientRegistry:
    return ClientRegistry.from_file(CLIENTS_FILE) if CLIENTS_FILE else ClientRegistry.from_config()


def list_clients():
    for client in _registry():
        print({
            "key": key_prefix(client.api_key),
            "client_id": client.client_id,
            "plan": client.plan.value,
            "active": client.active,
            "hourly_quota": client.hourly_quota,
        })

def client_stats():
    print(json.dumps(_registry().stats(), indent=2))

def new_key(plan="basic"):
    print(generate_api_key(plan))

def usage_stats(client_id, days=30):
    stats = report_service.get_usage_stats(create_ledger(), client_id, days)
    print(json.dumps(stats, indent=2))

def monthly_report(client_id, year, month, output_file=None):
    """Print or save the monthly billing report for a client."""
    report = report_service.generate_monthly_report(create_ledger(), client_id, year, month)
    if report is None:
        print(f"No usage data for {client_id} in {year}-{month:02d}")
        return
    if output_file:
        with open(output_file, 'w') as f:
            json.dump(report, f, indent=2)
        print(f"Report written to {output_file}")
    else:
        print(json.dumps(report, indent=2))

def main():
    configure_logging("WARNING")
    if len(sys.argv) < 2:
        print(__doc__)
        return
    cmd = sys.argv[1]
    if cmd == 'list-clients':
        list_clients()
    elif cmd == 'client-stats':
        client_stats()
    elif cmd == 'generate-key':
        new_key(sys.argv[2] if len(sys.argv) == 3 else "basic")
    elif cmd == 'stats' and len(sys.argv) in (3, 4):
        usage_stats(sys.argv[2], int(sys.argv[3]) if len(sys.argv) == 4 else 30)
    elif cmd == 'report' and len(sys.argv) in (5, 6):
        monthly_report(sys.argv[2], int(sys.argv[3]), int(sys.argv[4]),
                       sys.argv[5] if len(sys.argv) == 6 else None)
    else:
        print(__doc__)

if __name__ == "__main__":
    main()
