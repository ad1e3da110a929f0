from datetime import date, timedelta
from types import SimpleNamespace

from bmo.config import AnomalySettings
from bmo.pipelines.anomaly import detect_anomalies, detect_company_anomalies

from conftest import post_entry


def txn(id, amount, transaction_type="expense"):
    return SimpleNamespace(id=id, amount=amount, transaction_type=transaction_type)


def test_no_transactions():
    assert detect_anomalies([]) == []


def test_amount_outlier_is_flagged():
    transactions = [txn(f"t{i}", 100 + i) for i in range(30)] + [txn("big", 50_000)]

    anomalies = [a for a in detect_anomalies(transactions) if a.anomaly_type == "amount"]

    assert [a.transaction_id for a in anomalies] == ["big"]
    assert anomalies[0].severity == "high"
    assert 0.5 < anomalies[0].confidence <= 0.95
    assert "standard deviations from the mean" in anomalies[0].description


def test_uniform_amounts_have_no_amount_anomalies():
    transactions = [txn(f"t{i}", 250) for i in range(10)]
    assert not [a for a in detect_anomalies(transactions) if a.anomaly_type == "amount"]


def test_frequency_anomaly_names_dominant_type():
    transactions = [txn(f"e{i}", 10 + i) for i in range(20)]
    transactions += [txn("s1", 12, "sales"), txn("r1", 13, "revenue"), txn("p1", 14, "payroll")]
    transactions += [txn("a1", 15, "adjustment"), txn("i1", 16, "invoice")]

    anomalies = [a for a in detect_anomalies(transactions) if a.anomaly_type == "frequency"]

    # 25 transactions over 6 types: average ~4.2, expense has 20
    assert len(anomalies) == 1
    assert anomalies[0].transaction_id == "e0"
    assert anomalies[0].severity == "medium"
    assert '"expense"' in anomalies[0].description


def test_round_numbers():
    transactions = [txn("a", 999), txn("b", 1000), txn("c", 2500), txn("d", 3000)]

    anomalies = [a for a in detect_anomalies(transactions) if a.anomaly_type == "pattern"]

    assert sorted(a.transaction_id for a in anomalies) == ["b", "d"]
    assert all(a.severity == "low" and a.confidence == 0.5 for a in anomalies)
    assert "Large round number transaction: 1000" in {a.description for a in anomalies}


def test_results_are_ordered_by_severity():
    transactions = [txn(f"t{i}", 100 + i) for i in range(30)] + [txn("big", 50_000)]

    anomalies = detect_anomalies(transactions)

    severities = [a.severity for a in anomalies]
    rank = {"high": 3, "medium": 2, "low": 1}
    assert severities == sorted(severities, key=rank.get, reverse=True)
    assert anomalies[0].transaction_id == "big"


def test_thresholds_come_from_config():
    transactions = [txn(f"t{i}", 100) for i in range(9)] + [txn("odd", 400)]
    strict = AnomalySettings(zscore_threshold=2.0)
    lenient = AnomalySettings(zscore_threshold=4.0)

    assert any(a.anomaly_type == "amount" for a in detect_anomalies(transactions, strict))
    assert not any(a.anomaly_type == "amount" for a in detect_anomalies(transactions, lenient))


async def test_company_anomalies_use_posted_transactions_in_window(session, ledger, company):
    for i in range(12):
        await post_entry(session, company.id, ledger["rent"], ledger["cash"], 100 + i, txn_type="expense")
    await post_entry(session, company.id, ledger["rent"], ledger["cash"], 7000, txn_type="expense")
    # Older than the window
    await post_entry(
        session, company.id, ledger["rent"], ledger["cash"], 9000,
        on=date.today() - timedelta(days=90), txn_type="expense",
    )

    anomalies = await detect_company_anomalies(session, company.id, lookback_days=30)

    assert {a.anomaly_type for a in anomalies} == {"amount", "pattern"}
    assert all(a.transaction_id for a in anomalies)
    assert len([a for a in anomalies if a.anomaly_type == "pattern"]) == 1
