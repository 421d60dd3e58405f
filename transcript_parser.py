"""Turns a Vault Gemini XML export into spreadsheet rows.

This is a tolerant extractor, not an XML parser. The export is split on the
literal ``<Conversation>`` and ``<ConversationTurn>`` opening tags and each
field is pulled out with a first-match regex, so truncated or malformed
trailing data is dropped instead of rejected:

* the segment before the first opening tag is discarded;
* a segment without its closing tag contributes nothing;
* a missing field becomes an empty string;
* a turn is numbered by its position among the split segments, so a dropped
  turn still uses up a number.
"""
import re
from collections import namedtuple

SHEET_CELL_LIMIT = 49000
TRUNCATION_MARKER = "\n...[TRUNCATED]"
UNKNOWN_USER = "Unknown"

CONVERSATION_OPEN, CONVERSATION_CLOSE = '<Conversation>', '</Conversation>'
TURN_OPEN, TURN_CLOSE = '<ConversationTurn>', '</ConversationTurn>'

USER_EMAIL_RE = re.compile(r'<User>\s*<Email>(.*?)</Email>\s*</User>', re.IGNORECASE)
PROMPT_RE = re.compile(r'<Prompt>([\s\S]*?)</Prompt>', re.IGNORECASE)
PRIMARY_RESPONSE_RE = re.compile(r'<PrimaryResponse>([\s\S]*?)</PrimaryResponse>', re.IGNORECASE)

# Applied in order, so a double-encoded "&amp;lt;" decodes all the way to "<".
XML_ENTITIES = [('&amp;', '&'), ('&lt;', '<'), ('&gt;', '>'), ('&quot;', '"'), ('&apos;', "'"), ('&#39;', "'")]

TRANSCRIPT_COLUMNS = [
    ('user', "User"),
    ('conversation_id', "Conversation ID"),
    ('conversation_topic', "Conversation Topic"),
    ('turn_number', "Turn No."),
    ('request_id', "Request ID"),
    ('model_version', "Model Version"),
    ('timestamp', "Timestamp"),
    ('prompt', "Prompt"),
    ('response_id', "Response ID"),
    ('response', "Response"),
]
TRANSCRIPT_HEADERS = [header for _field, header in TRANSCRIPT_COLUMNS]
TranscriptRow = namedtuple('TranscriptRow', [field for field, _header in TRANSCRIPT_COLUMNS])

Turn = namedtuple('Turn', 'number request_id model_version timestamp prompt_text response_id response_text')
Conversation = namedtuple('Conversation', 'id topic turns')
Transcript = namedtuple('Transcript', 'user_email conversations')

_tag_patterns = {}


def decode_xml_entities(text):
    if not text: return ""
    for entity, char in XML_ENTITIES:
        text = text.replace(entity, char)
    return text


def _tag_pattern(tag):
    if tag not in _tag_patterns:
        _tag_patterns[tag] = re.compile(rf'<{tag}[^>]*>([\s\S]*?)</{tag}>', re.IGNORECASE)
    return _tag_patterns[tag]


def extract_tag(text, tag):
    """Decoded content of the first <tag ...>...</tag> in text, or "" when absent."""
    match = _tag_pattern(tag).search(text)
    return decode_xml_entities(match.group(1)) if match else ""


def utf16_length(value):
    return len(value.encode('utf-16-le')) // 2


def truncate_cell(value, limit=SHEET_CELL_LIMIT):
    """Cut string cells to limit UTF-16 code units, the unit Sheets counts in."""
    if not isinstance(value, str): return value
    if utf16_length(value) <= limit: return value
    # A surrogate pair split at the boundary is dropped whole.
    return value.encode('utf-16-le')[:limit * 2].decode('utf-16-le', errors='ignore') + TRUNCATION_MARKER


def complete_blocks(text, opening_tag, closing_tag):
    """(position, block) for every segment after an opening tag that also contains its closing tag.

    Position counts every segment from 1, kept or not.
    """
    for position, block in enumerate(text.split(opening_tag)[1:], start=1):
        if closing_tag in block:
            yield position, block


def parse_turn(number, block):
    prompt_text = ""
    prompt_match = PROMPT_RE.search(block)
    if prompt_match:
        prompt_text = extract_tag(prompt_match.group(0), "Text")

    response_id = response_text = ""
    response_match = PRIMARY_RESPONSE_RE.search(block)
    if response_match:
        response_block = response_match.group(0)
        response_id = extract_tag(response_block, "ResponseId")
        response_text = extract_tag(response_block, "Text")

    return Turn(number=number,
                request_id=extract_tag(block, "RequestId"),
                model_version=extract_tag(block, "ModelVersion"),
                timestamp=extract_tag(block, "Timestamp"),
                prompt_text=prompt_text, response_id=response_id, response_text=response_text)


def parse_conversation(block):
    turns = [parse_turn(number, turn_block) for number, turn_block in complete_blocks(block, TURN_OPEN, TURN_CLOSE)]
    return Conversation(id=extract_tag(block, "ConversationId"),
                        topic=extract_tag(block, "ConversationTopic").strip(),
                        turns=turns)


def parse_transcript(xml_text):
    user_match = USER_EMAIL_RE.search(xml_text)
    user_email = decode_xml_entities(user_match.group(1)) if user_match else UNKNOWN_USER
    conversations = [parse_conversation(block) for _position, block in complete_blocks(xml_text, CONVERSATION_OPEN, CONVERSATION_CLOSE)]
    return Transcript(user_email=user_email, conversations=conversations)


def transcript_rows(transcript, limit=SHEET_CELL_LIMIT):
    rows = []
    for conv in transcript.conversations:
        for turn in conv.turns:
            row = TranscriptRow(user=transcript.user_email, conversation_id=conv.id, conversation_topic=conv.topic,
                                turn_number=turn.number, request_id=turn.request_id, model_version=turn.model_version,
                                timestamp=turn.timestamp, prompt=turn.prompt_text, response_id=turn.response_id,
                                response=turn.response_text)
            rows.append(TranscriptRow(*[truncate_cell(value, limit) for value in row]))
    return rows


def transcript_sheet_values(rows):
    return [list(TRANSCRIPT_HEADERS)] + [list(row) for row in rows]
