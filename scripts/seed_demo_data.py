from __future__ import annotations

from ledgersight.db.base import Base
from ledgersight.db.session import SessionLocal, engine
from ledgersight.jobs.anomaly_detection import run_daily_anomaly_detection
import ledgersight.models  # noqa: F401
from ledgersight.services.seed import DEMO_EMAIL, seed_demo_data


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        seed_demo_data(db)
    print(f"Demo data seeded for {DEMO_EMAIL}.")

    result = run_daily_anomaly_detection(SessionLocal)
    print(f"Anomaly batch: {result.users} users, {result.anomalies} anomalies, {len(result.failed_user_ids)} failures.")


if __name__ == "__main__":
    main()
