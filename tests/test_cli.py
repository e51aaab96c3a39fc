import json
from unittest.mock import AsyncMock

import pytest

from claims_batching import cli
from claims_batching.store import InMemoryClaimStore


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    mocker.patch.object(cli, "configure_logging")


def use_store(mocker, store):
    mocker.patch.object(cli.PostgresClaimStore, "create", AsyncMock(return_value=store))


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_parser_estimate_arguments():
    args = cli.build_parser().parse_args([
        "estimate", "--insurer", "ACME", "--specialty", "Cardiology", "--priority", "4", "--amount", "1500",
    ])

    assert args.priority == 4
    assert args.amount == 1500.0
    assert args.date is None
    assert args.handler is cli.estimate_command


def test_estimate_prints_breakdown(mocker, capsys, insurer, store):
    use_store(mocker, store)

    code = cli.main([
        "estimate", "--insurer", insurer.code, "--specialty", "Orthopedics",
        "--priority", "5", "--amount", "3000", "--date", "2025-04-01",
    ])

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["baseCost"] == 150.0
    assert output["dayFactor"] == 0.2
    assert output["valueMultiplier"] == 1.2


def test_estimate_rejects_bad_priority(mocker, capsys, insurer, store):
    use_store(mocker, store)

    code = cli.main([
        "estimate", "--insurer", insurer.code, "--specialty", "Cardiology", "--priority", "9", "--amount", "100",
    ])

    assert code == 1
    assert "Priority level" in capsys.readouterr().err


def test_process_json_output(mocker, capsys, store, make_claims):
    for claim in make_claims(15):
        store.add_claim(claim)
    use_store(mocker, store)

    code = cli.main(["process", "--json"])

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["summary"]["total_claims"] == 15
    assert sum(batch["claim_count"] for batch in output["batches"]["TEST"]) == 15


def test_process_with_nothing_pending(mocker, capsys):
    use_store(mocker, InMemoryClaimStore())

    assert cli.main(["process"]) == 0
    assert "No pending claims" in capsys.readouterr().out


def test_init_db_creates_schema(mocker, capsys):
    fake_store = AsyncMock()
    use_store(mocker, fake_store)

    assert cli.main(["init-db"]) == 0
    fake_store.initialize_schema.assert_awaited_once()
    fake_store.close.assert_awaited_once()
