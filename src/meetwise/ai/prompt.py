def build_intent_prompt(body_text: str, today_iso: str) -> str:
    return f"""
You classify emails for a scheduling assistant.
Decide whether the email asks to set up a meeting, and pull out any scheduling details.
Return ONLY valid JSON. No prose. No markdown. No backticks. No extra keys.

Schema:
{{
  "is_meeting_request": true | false,
  "confidence": number between 0.0 and 1.0,
  "extracted_details": {{
    "duration": string or null,
    "time_frame": string or null,
    "purpose": string or null,
    "attendees": [email addresses] or [],
    "location": string or null
  }}
}}

Rules:
- A meeting REQUEST asks to schedule, meet, call, or asks about availability.
- Confirmations of an already scheduled meeting, cancellations and reschedule notices are NOT requests.
- Newsletters, receipts and marketing mail are NOT requests.
- Copy time expressions verbatim into time_frame (e.g. "tomorrow at 2pm"). Do not resolve them to dates.
- Only include attendees that appear as email addresses in the text.

--------------------
EXAMPLES (follow exactly)
--------------------

Email: "Can we meet tomorrow at 2pm to go over the Q3 plan?"
Output:
{{
  "is_meeting_request": true,
  "confidence": 0.95,
  "extracted_details": {{
    "duration": null,
    "time_frame": "tomorrow at 2pm",
    "purpose": "go over the Q3 plan",
    "attendees": [],
    "location": null
  }}
}}

Email: "Thanks, the call is confirmed for Thursday. See you then."
Output:
{{
  "is_meeting_request": false,
  "confidence": 0.85,
  "extracted_details": {{
    "duration": null,
    "time_frame": "Thursday",
    "purpose": null,
    "attendees": [],
    "location": null
  }}
}}

Email: "Let's sync sometime, happy to work around you."
Output:
{{
  "is_meeting_request": true,
  "confidence": 0.8,
  "extracted_details": {{
    "duration": null,
    "time_frame": null,
    "purpose": "sync",
    "attendees": [],
    "location": null
  }}
}}

--------------------
TASK
--------------------

Today is: {today_iso}

Email:
{body_text}
""".strip()
