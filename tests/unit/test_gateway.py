"""Tests for draftsign/storage/gateway.py: in-memory persistence semantics."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from draftsign.exceptions import ConcurrentModification, ContractNotFound, TokenNotFound
from draftsign.models.contract import Block, Contract, utcnow
from draftsign.models.token import SigningToken
from draftsign.storage.gateway import InMemoryGateway, PersistenceGateway


def new_contract() -> Contract:
    return Contract(owner_id="u", title="T", blocks=[Block(text="Body")])


def new_token(contract_id, **overrides) -> SigningToken:
    fields = {
        "token": uuid4().hex,
        "contract_id": contract_id,
        "party": "PartyB",
        "recipient_email": "bob@example.com",
    }
    fields.update(overrides)
    return SigningToken(**fields)


def test_satisfies_protocol():
    assert isinstance(InMemoryGateway(), PersistenceGateway)


class TestContracts:

    def test_save_sets_version(self, gateway):
        contract = asyncio.run(gateway.save_contract(new_contract()))
        assert contract.version == 1

    def test_reads_are_copies(self, gateway):
        async def scenario():
            saved = await gateway.save_contract(new_contract())
            loaded = await gateway.get_contract(saved.id)
            loaded.title = "changed locally"
            return await gateway.get_contract(saved.id)

        assert asyncio.run(scenario()).title == "T"

    def test_conflicting_writers(self, gateway):
        async def scenario():
            saved = await gateway.save_contract(new_contract())
            first = await gateway.get_contract(saved.id)
            second = await gateway.get_contract(saved.id)
            first.title = "first"
            await gateway.save_contract(first)
            second.title = "second"
            await gateway.save_contract(second)

        with pytest.raises(ConcurrentModification):
            asyncio.run(scenario())

    def test_unsaved_contract_with_version_conflicts(self, gateway):
        contract = new_contract()
        contract.version = 2
        with pytest.raises(ConcurrentModification):
            asyncio.run(gateway.save_contract(contract))

    def test_get_missing(self, gateway):
        with pytest.raises(ContractNotFound):
            asyncio.run(gateway.get_contract(uuid4()))

    def test_delete_cascades_tokens(self, gateway):
        async def scenario():
            contract = await gateway.save_contract(new_contract())
            token = new_token(contract.id)
            await gateway.save_token(token)
            await gateway.delete_contract(contract.id)
            await gateway.get_token(token.token)

        with pytest.raises(TokenNotFound):
            asyncio.run(scenario())


class TestTokens:

    def test_consume_once(self, gateway):
        contract_id = uuid4()
        token = new_token(contract_id)

        async def scenario():
            await gateway.save_token(token)
            now = utcnow()
            first = await gateway.atomic_consume_token(token.token, contract_id, "1.2.3.4", now)
            second = await gateway.atomic_consume_token(token.token, contract_id, "1.2.3.4", now)
            return first, second

        first, second = asyncio.run(scenario())
        assert first.used is True
        assert first.ip_address == "1.2.3.4"
        assert second is None

    def test_consume_wrong_contract(self, gateway):
        token = new_token(uuid4())

        async def scenario():
            await gateway.save_token(token)
            return await gateway.atomic_consume_token(token.token, uuid4(), None, utcnow())

        assert asyncio.run(scenario()) is None

    def test_consume_expired(self, gateway):
        contract_id = uuid4()
        token = new_token(contract_id, expires_at=utcnow() - timedelta(seconds=1))

        async def scenario():
            await gateway.save_token(token)
            return await gateway.atomic_consume_token(token.token, contract_id, None, utcnow())

        assert asyncio.run(scenario()) is None

    def test_tokens_for_contract_and_purge(self, gateway):
        contract_id = uuid4()
        live = new_token(contract_id)
        stale = new_token(contract_id, expires_at=utcnow() - timedelta(hours=1))

        async def scenario():
            await gateway.save_token(live)
            await gateway.save_token(stale)
            before = await gateway.tokens_for_contract(contract_id)
            removed = await gateway.purge_expired_tokens()
            after = await gateway.tokens_for_contract(contract_id)
            return before, removed, after

        before, removed, after = asyncio.run(scenario())
        assert len(before) == 2
        assert removed == 1
        assert [t.token for t in after] == [live.token]
