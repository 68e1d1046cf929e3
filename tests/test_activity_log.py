from invoice_pilot.activity_log import ActivityLog


def test_recent_returns_latest_messages_oldest_first(tmp_path):
    log = ActivityLog(tmp_path / "data" / "activity.db")
    for index in range(5):
        log.append(f"line {index}")

    assert log.recent(3) == ["line 2", "line 3", "line 4"]
    assert log.count() == 5


def test_messages_survive_reopening(tmp_path):
    db_path = tmp_path / "activity.db"
    ActivityLog(db_path).append("10:00:00: Starting invoice processing...")

    reopened = ActivityLog(db_path)

    assert reopened.recent() == ["10:00:00: Starting invoice processing..."]
    row = next(reopened.db[ActivityLog.TABLE].rows)
    assert row["created_at"].endswith("+00:00")
