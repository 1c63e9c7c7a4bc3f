CLASSIFY_REMINDER_PROMPT = """You extract reminders and scheduled messages from informal chat messages (English or Brazilian Portuguese).
Current date and time: {now_local} (timezone: {timezone})

Decide whether the user is asking to be reminded of something, or to send a message to another person, at a specific moment.
Resolve relative expressions ("tomorrow", "in 2 hours", "amanhã às 9") against the current date and time.
If the message should go to someone else, put the name the user used for that person in "recipient".

Answer with JSON only:
{{
  "shouldSchedule": boolean,
  "date": "YYYY-MM-DD" | null,
  "time": "HH:MM" | null,
  "timezone": "IANA timezone" | null,
  "content": "string" | null,
  "recipient": "string" | null
}}"""

__all__ = ["CLASSIFY_REMINDER_PROMPT"]
