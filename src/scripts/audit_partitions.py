"""Audit queue partitions for rows and positions an operator must fix.

Usage:
    python -m src.scripts.audit_partitions [--date YYYY-MM-DD]

Reports rows whose kind and fields disagree and partitions whose queue
positions are not dense. Nothing is modified.
"""

import argparse
import asyncio
import sys
from datetime import date

from src.core.errors import InvalidState, InvariantViolation
from src.services.supabase import SupabaseAppointmentStore


async def audit(store: SupabaseAppointmentStore, day: date) -> int:
    """Print findings for ``day`` and return how many problems were found."""
    problems = 0

    print(f"1. Checking appointment rows for {day.isoformat()}...")
    bad_rows = await store.find_inconsistent(day)
    if bad_rows:
        print(f"[WARN] {len(bad_rows)} inconsistent row(s):")
        for row in bad_rows:
            print(
                f"   - {row.get('id')} barber={row.get('barber_id')} "
                f"type={row.get('appointment_type')} "
                f"time={row.get('appointment_time')} "
                f"position={row.get('queue_position')}: {row['problem']}"
            )
        problems += len(bad_rows)
    else:
        print("[OK] All rows consistent.")

    print("\n2. Checking queue positions per barber...")
    for key in await store.partition_keys(day):
        try:
            state = await store.load_partition(key)
            state.check_invariants()
            print(f"[OK] {key}: {len(state.waiting())} waiting, version {state.version}")
        except InvalidState:
            print(f"[SKIP] {key}: contains inconsistent rows (see above)")
        except InvariantViolation as e:
            print(f"[WARN] {key}: {e.message} {e.context}")
            problems += 1

    return problems


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--date", type=date.fromisoformat, default=date.today())
    args = parser.parse_args(argv)

    problems = asyncio.run(audit(SupabaseAppointmentStore(), args.date))
    print(f"\n{problems} problem(s) found.")
    return 1 if problems else 0


if __name__ == "__main__":
    sys.exit(main())
