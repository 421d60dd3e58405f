"""Tests for the tolerant Gemini XML transcript extractor."""

from transcript_parser import (
    SHEET_CELL_LIMIT,
    TRANSCRIPT_HEADERS,
    TRUNCATION_MARKER,
    TranscriptRow,
    decode_xml_entities,
    extract_tag,
    parse_transcript,
    transcript_rows,
    transcript_sheet_values,
    truncate_cell,
)


def turn_xml(request_id="req-1", prompt="Hello", response_id="resp-1", response="Hi there"):
    return (
        "<ConversationTurn>"
        f"<RequestId>{request_id}</RequestId>"
        "<ModelVersion>gemini-2.5</ModelVersion>"
        "<Timestamp>2025-01-02T03:04:05Z</Timestamp>"
        f"<Prompt><Text>{prompt}</Text></Prompt>"
        f"<PrimaryResponse><ResponseId>{response_id}</ResponseId><Text>{response}</Text></PrimaryResponse>"
        "</ConversationTurn>"
    )


def conversation_xml(conv_id="conv-1", topic="  Planning  ", turns=None):
    body = "".join(turns if turns is not None else [turn_xml()])
    return (
        "<Conversation>"
        f"<ConversationId>{conv_id}</ConversationId>"
        f"<ConversationTopic>{topic}</ConversationTopic>"
        f"{body}"
        "</Conversation>"
    )


def export_xml(*conversations, user="alice@example.com"):
    return (
        '<?xml version="1.0" encoding="UTF-8"?><Export>'
        f"<User>\n  <Email>{user}</Email>\n</User>"
        f"{''.join(conversations)}"
        "</Export>"
    )


class TestDecodeXmlEntities:
    def test_standard_entities(self):
        assert decode_xml_entities("A &amp; B &lt;tag&gt;") == "A & B <tag>"

    def test_quotes_and_apostrophes(self):
        assert decode_xml_entities("&quot;it&apos;s&#39;") == "\"it's'"

    def test_empty_and_none(self):
        assert decode_xml_entities("") == ""
        assert decode_xml_entities(None) == ""

    def test_double_encoded_entity_decodes_fully(self):
        assert decode_xml_entities("&amp;lt;") == "<"


class TestExtractTag:
    def test_first_occurrence_only(self):
        assert extract_tag("<Text>one</Text><Text>two</Text>", "Text") == "one"

    def test_case_insensitive_with_attributes_and_newlines(self):
        assert extract_tag('<text lang="en">line 1\nline 2</TEXT>', "Text") == "line 1\nline 2"

    def test_missing_tag_is_empty(self):
        assert extract_tag("<Other>x</Other>", "Text") == ""

    def test_decodes_entities(self):
        assert extract_tag("<Text>a &lt; b</Text>", "Text") == "a < b"


class TestTruncateCell:
    def test_limit_plus_one_is_cut(self):
        value = "x" * (SHEET_CELL_LIMIT + 1)
        assert truncate_cell(value) == "x" * SHEET_CELL_LIMIT + TRUNCATION_MARKER

    def test_exact_limit_untouched(self):
        value = "x" * SHEET_CELL_LIMIT
        assert truncate_cell(value) is value

    def test_non_strings_pass_through(self):
        assert truncate_cell(7, limit=0) == 7
        assert truncate_cell(None, limit=0) is None

    def test_custom_limit(self):
        assert truncate_cell("abcdef", limit=3) == "abc" + TRUNCATION_MARKER

    def test_astral_characters_count_as_two_units(self):
        at_limit = "\U0001F600" * 5
        assert truncate_cell(at_limit, limit=10) is at_limit
        one_over = "a" + at_limit
        assert truncate_cell(one_over, limit=10) == "a" + "\U0001F600" * 4 + TRUNCATION_MARKER

    def test_emoji_text_over_default_limit_is_cut(self):
        value = "\U0001F600" * 30000
        assert truncate_cell(value) == "\U0001F600" * (SHEET_CELL_LIMIT // 2) + TRUNCATION_MARKER


class TestParseTranscript:
    def test_single_turn_yields_all_fields(self):
        xml = export_xml(conversation_xml(
            topic="Tom &amp; Jerry",
            turns=[turn_xml(prompt="Is 1 &lt; 2?", response="Yes, 1 &lt; 2 &amp; 2 &gt; 1")]))
        rows = transcript_rows(parse_transcript(xml))
        assert rows == [TranscriptRow(
            user="alice@example.com", conversation_id="conv-1", conversation_topic="Tom & Jerry",
            turn_number=1, request_id="req-1", model_version="gemini-2.5",
            timestamp="2025-01-02T03:04:05Z", prompt="Is 1 < 2?", response_id="resp-1",
            response="Yes, 1 < 2 & 2 > 1")]

    def test_topic_is_trimmed(self):
        transcript = parse_transcript(export_xml(conversation_xml(topic="\n   Planning  \n")))
        assert transcript.conversations[0].topic == "Planning"

    def test_missing_user_is_unknown(self):
        transcript = parse_transcript("<Export>" + conversation_xml() + "</Export>")
        assert transcript.user_email == "Unknown"

    def test_leading_segment_is_discarded(self):
        # Stray turn markup before the first <Conversation> must not produce rows.
        xml = turn_xml(request_id="stray") + export_xml(conversation_xml())
        rows = transcript_rows(parse_transcript(xml))
        assert [r.request_id for r in rows] == ["req-1"]

    def test_truncated_trailing_conversation_is_dropped(self):
        xml = export_xml(conversation_xml(conv_id="good")) + "<Conversation><ConversationId>cut</ConversationId>" + turn_xml()
        transcript = parse_transcript(xml)
        assert [c.id for c in transcript.conversations] == ["good"]
        assert len(transcript_rows(transcript)) == 1

    def test_turn_number_counts_dropped_segments(self):
        broken_turn = "<ConversationTurn><RequestId>broken</RequestId>"
        xml = export_xml(conversation_xml(turns=[broken_turn, turn_xml(request_id="req-2"), turn_xml(request_id="req-3")]))
        rows = transcript_rows(parse_transcript(xml))
        assert [(r.turn_number, r.request_id) for r in rows] == [(2, "req-2"), (3, "req-3")]

    def test_missing_envelopes_give_empty_fields(self):
        turn = "<ConversationTurn><RequestId>r</RequestId><Text>loose</Text></ConversationTurn>"
        rows = transcript_rows(parse_transcript(export_xml(conversation_xml(turns=[turn]))))
        assert rows[0].prompt == ""
        assert rows[0].response_id == ""
        assert rows[0].response == ""
        assert rows[0].model_version == ""

    def test_prompt_text_does_not_leak_into_response(self):
        turn = ("<ConversationTurn><Prompt><Text>question</Text></Prompt>"
                "<PrimaryResponse><ResponseId>id</ResponseId></PrimaryResponse></ConversationTurn>")
        rows = transcript_rows(parse_transcript(export_xml(conversation_xml(turns=[turn]))))
        assert rows[0].prompt == "question"
        assert rows[0].response == ""

    def test_multiple_conversations_keep_order(self):
        xml = export_xml(conversation_xml(conv_id="a", turns=[turn_xml(), turn_xml()]), conversation_xml(conv_id="b"))
        rows = transcript_rows(parse_transcript(xml))
        assert [(r.conversation_id, r.turn_number) for r in rows] == [("a", 1), ("a", 2), ("b", 1)]

    def test_conversation_without_turns_yields_no_rows(self):
        transcript = parse_transcript(export_xml(conversation_xml(turns=[])))
        assert len(transcript.conversations) == 1
        assert transcript_rows(transcript) == []

    def test_empty_document(self):
        transcript = parse_transcript("")
        assert transcript.user_email == "Unknown"
        assert transcript.conversations == []


class TestTranscriptRows:
    def test_every_string_cell_is_truncated(self):
        xml = export_xml(conversation_xml(turns=[turn_xml(prompt="p" * 20, response="r" * 5)]))
        row = transcript_rows(parse_transcript(xml), limit=10)[0]
        assert row.prompt == "p" * 10 + TRUNCATION_MARKER
        assert row.response == "r" * 5
        assert row.user == "alice@exam" + TRUNCATION_MARKER
        assert row.turn_number == 1

    def test_sheet_values_match_headers(self):
        rows = transcript_rows(parse_transcript(export_xml(conversation_xml())))
        values = transcript_sheet_values(rows)
        assert values[0] == ["User", "Conversation ID", "Conversation Topic", "Turn No.", "Request ID",
                             "Model Version", "Timestamp", "Prompt", "Response ID", "Response"]
        assert len(values) == 2
        assert dict(zip(values[0], values[1]))["Turn No."] == 1
        assert dict(zip(values[0], values[1]))["Response"] == "Hi there"

    def test_field_order_matches_headers(self):
        assert len(TranscriptRow._fields) == len(TRANSCRIPT_HEADERS)
        assert dict(zip(TranscriptRow._fields, TRANSCRIPT_HEADERS))["prompt"] == "Prompt"
        assert dict(zip(TranscriptRow._fields, TRANSCRIPT_HEADERS))["turn_number"] == "Turn No."
