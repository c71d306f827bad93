"""Unit tests for the shared VisionProvider behaviour."""

import re

import pytest
from conftest import ScriptedVisionProvider, parts_json

from cutlist_intake.core.exceptions import (
    ConfigurationError,
    ProviderNotConfiguredError,
    ProviderRequestError,
    ResponseFormatError,
)
from cutlist_intake.models.extraction import ParseOptions
from cutlist_intake.services.chunking.text_chunker import TextChunker

SECTION = re.compile(r"This is section (\d+) of (\d+)")
TRUNCATED = '{"parts": [{"length": 700, "width": 300}, {"length": 5'


def long_table(rows: int = 200) -> str:
    header = "Project: Wardrobes\n# | Part Name | L(mm) | W(mm) | Qty"
    return header + "\n" + "\n".join(f"{i} | Panel | 720 | 560 | 1" for i in range(1, rows + 1))


class TestVisionProviderCompletion:
    """Single-call parsing."""

    @pytest.mark.asyncio
    async def test_unconfigured_provider_raises(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: "{}", configured=False)

        with pytest.raises(ProviderNotConfiguredError):
            await provider.parse_text("1 | Side | 720 | 560 | 2", ParseOptions())

    @pytest.mark.asyncio
    async def test_parts_are_normalized(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: parts_json(("Side", 720, 560, 2)))

        result = await provider.parse_text("1 | Side | 720 | 560 | 2", ParseOptions())

        assert len(result.parts) == 1
        assert result.parts[0].provenance.strategy == "vision_text"
        assert result.confidence == 0.96
        assert "INPUT DATA:\n1 | Side | 720 | 560 | 2" in provider.calls[0][0]

    @pytest.mark.asyncio
    async def test_free_form_notes_get_the_free_form_prompt(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: parts_json(("Shelf", 680, 540, 2)))

        await provider.parse_text("Hi, can you cut me\n2 shelves 680x540 same as last time\nthanks", ParseOptions())

        assert "free-form notes" in provider.calls[0][0]

    @pytest.mark.asyncio
    async def test_tables_keep_the_table_prompt(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: parts_json(("Side", 720, 560, 2)))
        table = "# | Part Name | L(mm) | W(mm) | Qty\n1 | Side | 720 | 560 | 2\n2 | Top | 600 | 560 | 1"

        await provider.parse_text(table, ParseOptions())

        assert "free-form notes" not in provider.calls[0][0]
        assert "Extract every part from this cutlist" in provider.calls[0][0]

    @pytest.mark.asyncio
    async def test_caller_decision_on_messiness_wins(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: parts_json(("Side", 720, 560, 2)))

        await provider.parse_text("Hi, can you cut me a side 720x560", ParseOptions(is_messy_data=False))

        assert "free-form notes" not in provider.calls[0][0]

    @pytest.mark.asyncio
    async def test_image_is_sent_as_attachment(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: parts_json(("Door", 700, 400, 2)))

        result = await provider.parse_image(b"jpeg-bytes", "image/jpeg", ParseOptions())

        attachment = provider.calls[0][1]
        assert attachment.data == b"jpeg-bytes"
        assert attachment.mime_type == "image/jpeg"
        assert result.parts[0].provenance.strategy == "vision_image"

    @pytest.mark.asyncio
    async def test_unreadable_answer_raises_with_raw_response(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: "I cannot see a table here.")

        with pytest.raises(ResponseFormatError) as exc_info:
            await provider.parse_image(b"img", "image/png", ParseOptions())

        assert exc_info.value.raw_response == "I cannot see a table here."
        assert exc_info.value.remediation

    @pytest.mark.asyncio
    async def test_truncated_answer_keeps_complete_parts_and_warns(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: TRUNCATED)

        result = await provider.parse_text("rows", ParseOptions())

        assert result.truncated is True
        assert len(result.parts) == 1
        assert any(w.startswith("Response may be incomplete") for w in result.warnings)
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_truncation_retry_when_enabled(self):
        answers = iter([TRUNCATED, parts_json(("A", 700, 300, 1), ("B", 500, 300, 1))])
        provider = ScriptedVisionProvider(lambda prompt, attachment: next(answers))

        result = await provider.parse_text("rows", ParseOptions(allow_truncation_retry=True))

        assert len(provider.calls) == 2
        assert result.truncated is False
        assert len(result.parts) == 2

    @pytest.mark.asyncio
    async def test_native_documents_need_support(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: "{}")

        with pytest.raises(ConfigurationError):
            await provider.parse_document(b"%PDF", ParseOptions())


class TestVisionProviderChunking:
    """Long text is split, parsed per chunk and reassembled."""

    @staticmethod
    def _by_section(prompt, attachment):
        match = SECTION.search(prompt)
        section = int(match.group(1))
        return parts_json((f"Part {section}", 100 * section, 300, 1))

    @pytest.mark.asyncio
    async def test_chunks_are_merged_in_order(self):
        provider = ScriptedVisionProvider(
            self._by_section, chunker=TextChunker(rows_per_chunk=75), chunk_row_threshold=80
        )

        result = await provider.parse_text(long_table(), ParseOptions())

        assert result.chunk_count == 3
        assert [part.label for part in result.parts] == ["Part 1", "Part 2", "Part 3"]
        assert [part.row_number for part in result.parts] == [1, 2, 3]
        assert [part.provenance.chunk_index for part in result.parts] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_failed_chunk_becomes_a_warning(self):
        def responder(prompt, attachment):
            if "This is section 2 of" in prompt:
                raise ProviderRequestError("API Client Error 400")
            return self._by_section(prompt, attachment)

        provider = ScriptedVisionProvider(responder, chunker=TextChunker(rows_per_chunk=75), chunk_row_threshold=80)

        result = await provider.parse_text(long_table(), ParseOptions())

        assert [part.label for part in result.parts] == ["Part 1", "Part 3"]
        assert "Section 2 of 3 could not be parsed" in result.warnings

    @pytest.mark.asyncio
    async def test_pages_skip_chunking(self):
        provider = ScriptedVisionProvider(lambda prompt, attachment: parts_json(("Panel", 720, 560, 1)))

        result = await provider.parse_text(long_table(), ParseOptions().for_page(1, 2))

        assert len(provider.calls) == 1
        assert result.chunk_count == 1
        assert "This text is page 1 of 2." in provider.calls[0][0]
