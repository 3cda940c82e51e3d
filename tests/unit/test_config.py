from __future__ import annotations

from src.app.config import LedgerSettings, Settings


class TestSettings:
    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("LEDGER_NODE_URL", "http://ganache:8545")
        monkeypatch.setenv("LEDGER_PRIVATE_KEY", "0x" + "11" * 32)
        monkeypatch.setenv("RECIPE_REGISTRY_ADDRESS", "0x" + "12" * 20)
        monkeypatch.setenv("LEDGER_GAS_LIMIT", "500000")
        monkeypatch.setenv("ANCHOR_MODE", "inline")

        settings = Settings(_env_file=None)
        ledger = settings.ledger()

        assert settings.ANCHOR_MODE == "inline"
        assert ledger.node_url == "http://ganache:8545"
        assert ledger.gas_limit == 500_000
        assert ledger.has_contract

    def test_defaults(self, monkeypatch) -> None:
        for name in ("LEDGER_NODE_URL", "LEDGER_NETWORK_ID", "LEDGER_GAS_LIMIT", "ANCHOR_MODE"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.LEDGER_NODE_URL == "http://127.0.0.1:7545"
        assert settings.LEDGER_NETWORK_ID == 5777
        assert settings.LEDGER_GAS_LIMIT == 300_000
        assert settings.ANCHOR_MODE == "queued"


class TestLedgerSettingsValidate:
    def test_complete(self) -> None:
        check = LedgerSettings(
            node_url="http://127.0.0.1:7545",
            private_key="0x" + "11" * 32,
            contract_address="0x" + "12" * 20,
        ).validate(require_contract=True)

        assert check.is_valid
        assert check.warnings == []

    def test_missing_url_and_key(self) -> None:
        check = LedgerSettings(contract_address="0x" + "12" * 20).validate()

        assert not check.is_valid
        assert check.errors == ["LEDGER_NODE_URL is not set", "LEDGER_PRIVATE_KEY is not set"]

    def test_missing_contract_is_a_warning(self) -> None:
        check = LedgerSettings(node_url="http://127.0.0.1:7545", private_key="0x1").validate()

        assert check.is_valid
        assert len(check.warnings) == 1

    def test_missing_contract_when_required(self) -> None:
        check = LedgerSettings(node_url="http://127.0.0.1:7545", private_key="0x1").validate(
            require_contract=True
        )

        assert not check.is_valid
        assert "RECIPE_REGISTRY_ADDRESS" in check.errors[0]
