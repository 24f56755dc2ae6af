"""Tests for sender -> actor resolution."""

import pytest

from .fakes import JOAO, MARIA, FakeActorRepository


def _directory(actors=None, clock=None):
    from lardigital.domain.actors import ActorDirectory

    repo = FakeActorRepository([MARIA, JOAO] if actors is None else actors)
    kwargs = {"clock": clock} if clock else {}
    return ActorDirectory(repo, **kwargs), repo


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("5511987654321@s.whatsapp.net", "11987654321"),
            ("5511987654321:12@s.whatsapp.net", "11987654321"),
            ("+55 (11) 98765-4321", "11987654321"),
            ("11987654321", "11987654321"),
            (None, ""),
        ],
    )
    def test_normalize(self, raw, expected):
        from lardigital.domain.actors import normalize_phone

        assert normalize_phone(raw) == expected

    def test_match_on_last_digits(self):
        from lardigital.domain.actors import phones_match

        assert phones_match("11 98765-4321", "1187654321")
        assert not phones_match("11987654321", "11987654000")
        assert not phones_match("4321", "4321")


class TestResolve:
    def test_by_phone(self):
        directory, _ = _directory()

        assert directory.resolve(phone="5511987654321", name="Outro Nome") == MARIA

    def test_by_full_name_ignoring_accents(self):
        directory, _ = _directory()

        assert directory.resolve(phone=None, name="joao  souza") == JOAO

    def test_by_unique_first_name(self):
        directory, _ = _directory()

        assert directory.resolve(phone="5521900000000", name="Maria") == MARIA

    def test_ambiguous_first_name_is_unknown(self):
        from lardigital.domain.records import Actor

        directory, _ = _directory([MARIA, Actor(id=3, name="Maria Costa")])

        assert directory.resolve(phone=None, name="Maria") is None

    def test_unknown_sender(self):
        directory, _ = _directory()

        assert directory.resolve(phone="5521900000000", name=None) is None

    def test_actor_list_is_cached(self):
        now = [0.0]
        directory, repo = _directory(clock=lambda: now[0])

        directory.resolve(phone=None, name="Maria")
        directory.resolve(phone=None, name="João")
        assert repo.list_calls == 1

        now[0] = 301.0
        directory.known_names()
        assert repo.list_calls == 2


class TestEnsure:
    def test_existing_actor_is_returned(self):
        directory, repo = _directory()

        assert directory.ensure(phone="5511987654321", name=None) == MARIA
        assert len(repo.rows) == 2

    def test_creates_named_actor(self):
        directory, repo = _directory()

        actor = directory.ensure(phone="5521999991234", name="Ana Lima")

        assert actor.name == "Ana Lima"
        assert actor.phone == "21999991234"
        assert directory.resolve(phone="5521999991234", name=None) == actor

    def test_creates_placeholder_name_from_phone(self):
        directory, _ = _directory()

        actor = directory.ensure(phone="5521999994321", name=None)

        assert actor.name == "Contato 4321"
