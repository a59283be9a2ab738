# tests/test_domain.py
"""
Tests for domain value objects, recipient parsing and the number generator.
"""
import random

import pytest

from bulkdispatch.core.domain import (
    DispatchState,
    Progress,
    RecipientSource,
    SessionContext,
    StartCommand,
)
from bulkdispatch.core.errors import ValidationError
from bulkdispatch.core.number_generator import NumberGenerator
from bulkdispatch.core.recipients import parse_number_list, resolve_recipients


class TestProgress:
    def test_remaining(self):
        assert Progress(sent=2, failed=1, total=5).remaining == 2

    def test_remaining_never_negative(self):
        assert Progress(sent=3, failed=3, total=4).remaining == 0

    def test_to_dict(self):
        assert Progress(sent=2, failed=0, total=2).to_dict() == {
            "sent": 2, "failed": 0, "total": 2, "remaining": 0,
        }


class TestSessionContext:
    def test_counters(self):
        session = SessionContext(total=3)
        session.record_sent()
        session.record_failed()
        session.record_sent()
        assert session.progress() == Progress(sent=2, failed=1, total=3)

    def test_finish_clears_flags(self):
        session = SessionContext(state=DispatchState.SENDING, is_sending=True, cancel_requested=True)
        session.finish(DispatchState.STOPPED)
        assert session.state is DispatchState.STOPPED
        assert session.is_sending is False
        assert session.cancel_requested is False

    def test_session_ids_are_unique(self):
        assert SessionContext().session_id != SessionContext().session_id


class TestParseNumberList:
    def test_mixed_separators(self):
        assert parse_number_list("a, b;;c\n d") == ["a", "b", "c", "d"]

    def test_empty_and_none(self):
        assert parse_number_list("") == []
        assert parse_number_list(None) == []
        assert parse_number_list(" ,;\n\t ") == []

    def test_keeps_order_and_duplicates(self):
        assert parse_number_list("3,1,3") == ["3", "1", "3"]


class TestNumberGenerator:
    def test_generates_requested_count_of_distinct_numbers(self):
        generator = NumberGenerator(rng=random.Random(1))
        numbers = generator.generate(200)
        assert len(numbers) == 200
        pattern = generator.pattern()
        assert all(pattern.match(n) for n in numbers)

    def test_default_format(self):
        number = next(iter(NumberGenerator(rng=random.Random(7)).generate(1)))
        assert number.startswith("+258")
        assert number[4:6] in {"84", "82", "85", "86", "87"}
        assert len(number) == 1 + 3 + 2 + 7

    def test_small_space_is_exhausted_without_duplicates(self):
        generator = NumberGenerator(
            region_code="1", prefixes=("5",), suffix_width=1, suffix_min=0, suffix_max=9,
            rng=random.Random(3),
        )
        assert generator.capacity == 10
        assert generator.generate(10) == {f"+15{d}" for d in range(10)}

    def test_suffix_is_zero_padded(self):
        generator = NumberGenerator(
            region_code="1", prefixes=("5",), suffix_width=4, suffix_min=7, suffix_max=7,
        )
        assert generator.generate(1) == {"+150007"}

    @pytest.mark.parametrize("count", [0, -1])
    def test_rejects_non_positive_count(self, count):
        with pytest.raises(ValueError):
            NumberGenerator().generate(count)

    def test_rejects_count_above_capacity(self):
        generator = NumberGenerator(prefixes=("5",), suffix_width=1, suffix_min=0, suffix_max=9)
        with pytest.raises(ValueError, match="capacity"):
            generator.generate(11)

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            NumberGenerator(prefixes=())
        with pytest.raises(ValueError):
            NumberGenerator(suffix_min=10, suffix_max=1)
        with pytest.raises(ValueError):
            NumberGenerator(suffix_width=2, suffix_min=1, suffix_max=999)

    def test_seeded_generators_are_reproducible(self):
        first = NumberGenerator(rng=random.Random(99)).generate(5)
        second = NumberGenerator(rng=random.Random(99)).generate(5)
        assert first == second


class TestResolveRecipients:
    def _generator(self):
        return NumberGenerator(rng=random.Random(5))

    def test_paste_keeps_repeats_for_the_store(self):
        command = StartCommand(message="hi", source=RecipientSource.PASTE, number_list="111,222,111")
        assert resolve_recipients(command, self._generator()) == ["111", "222", "111"]

    def test_file_source_parses_like_paste(self):
        command = StartCommand(message="hi", source=RecipientSource.FILE, number_list="111\n222\r\n333")
        assert resolve_recipients(command, self._generator()) == ["111", "222", "333"]

    def test_dedup_is_not_semantic(self):
        command = StartCommand(message="hi", source=RecipientSource.PASTE, number_list="+258841 258841")
        assert resolve_recipients(command, self._generator()) == ["+258841", "258841"]

    def test_empty_list_raises(self):
        command = StartCommand(message="hi", source=RecipientSource.PASTE, number_list=" ;, ")
        with pytest.raises(ValidationError, match="No valid numbers"):
            resolve_recipients(command, self._generator())

    def test_random_source(self):
        command = StartCommand(message="hi", source=RecipientSource.RANDOM, quantity=3)
        identifiers = resolve_recipients(command, self._generator())
        assert len(identifiers) == 3
        assert identifiers == sorted(identifiers)

    @pytest.mark.parametrize("quantity", [None, 0, -2])
    def test_random_requires_positive_quantity(self, quantity):
        command = StartCommand(message="hi", source=RecipientSource.RANDOM, quantity=quantity)
        with pytest.raises(ValidationError):
            resolve_recipients(command, self._generator())

    def test_random_quantity_limit(self):
        command = StartCommand(message="hi", source=RecipientSource.RANDOM, quantity=11)
        with pytest.raises(ValidationError, match="exceeds the limit"):
            resolve_recipients(command, self._generator(), max_quantity=10)
