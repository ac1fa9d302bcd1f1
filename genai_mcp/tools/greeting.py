"""
Greeting Tool

Returns a random greeting that echoes the caller's prompt.
Needs no credentials; handy for checking the protocol path end to end.
"""

import random
from datetime import datetime, timezone

from ..base import ToolParameter, tool

GREETINGS = [
    "Hello! Have a wonderful day!",
    "Good morning! A brand new day has begun!",
    "Good evening! Thanks for all your hard work today!",
    "Nice to meet you! Looking forward to working together!",
    "How are you? What kind of day has it been?",
    "Welcome! Is there anything I can help you with?",
    "What a lovely day! Did anything fun happen?",
    "Great job today! You're doing really well!",
    "Hi there! Enjoy your time with a smile!",
    "So glad to see you! How is your day going?",
    "Have a fantastic day! I'm cheering for you!",
    "Thanks for another day of effort! Get some good rest!",
]


@tool(
    name="get_random_greeting",
    description="Returns a random greeting together with the user's message.",
    parameters=[
        ToolParameter(
            name="userPrompt",
            type="string",
            description="The user's message to echo back with the greeting",
            required=True
        )
    ],
    category="greeting"
)
async def get_random_greeting(userPrompt: str) -> str:
    greeting = random.choice(GREETINGS)
    generated_at = datetime.now(timezone.utc).isoformat()
    return f'{greeting}\n\n(Your message: "{userPrompt}")\nGenerated at: {generated_at}'
