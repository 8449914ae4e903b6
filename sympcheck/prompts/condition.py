"""Prompt templates for single-condition detail lookup."""

CONDITION_SYSTEM = (
    "You are a medical-assistant AI. Return ONLY a JSON object describing a medical condition."
)

CONDITION_USER = """\
Required JSON fields:
- "Id": the condition ID (same as input)
- "Name": the official disease/condition name
- "Specialties": an array of relevant medical specialties
- "Description": 2-4 sentence summary
- "CommonCauses": array of common medical causes
- "RedFlags": array of dangerous symptoms requiring urgent care
- "Investigations": recommended clinical tests
- "Disclaimer": medical safety disclaimer

Now generate JSON for condition ID: "{condition_id}".
Return ONLY JSON. Do not put double quotes inside string values."""
