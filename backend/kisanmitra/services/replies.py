"""Canned bot replies (Telegram HTML parse mode: <b> and emoji only)."""
from html import escape


def welcome_text(product_name: str) -> str:
    return f"""🌾 <b>Welcome to {escape(product_name)}!</b>

I'm your AI farming assistant. I can help you with:

🌤️ Weather forecasts &amp; alerts
📊 Live market prices
🌱 Crop management &amp; advice
🤖 AI-powered assistance

<b>Try these commands:</b>
/help - See all commands
/weather - Current weather
/market - Market prices
/ask [question] - Ask me anything
/link - Connect this chat to your app account

Let's grow together! 🚜"""


def help_text() -> str:
    return """📚 <b>Available Commands</b>

<b>Weather:</b>
/weather - Current weather

<b>Market:</b>
/market - Top prices

<b>AI:</b>
/ask [question] - Ask anything
Or just type your question!

<b>Account:</b>
/link - Get a code to link your app account
/unlink - Disconnect this chat

Try: /weather or /market"""


def weather_text() -> str:
    return """🌤️ <b>Weather Update</b>

📍 Location: Punjab, India
🌡️ Temperature: 28°C
💧 Humidity: 65%
🌧️ Rain: 20% chance

<b>3-Day Forecast:</b>
Tomorrow: 26°C, Cloudy
Day 2: 27°C, Sunny
Day 3: 25°C, Rainy

💡 Good conditions for field work!"""


def market_text() -> str:
    return """📊 <b>Market Prices Today</b>

🌾 Wheat: ₹2,200/quintal (↑ 5%)
🍚 Rice: ₹3,800/quintal (↓ 2%)
🍅 Tomato: ₹25/kg (↑ 15%)
🧅 Onion: ₹18/kg (↑ 8%)

📍 Punjab Mandis
🕒 Updated: Just now

💡 Tomato prices rising!"""


def ai_response_text(question: str, answer: str) -> str:
    return f"""🤖 <b>AI Response</b>

Question: "{escape(question)}"

{escape(answer)}"""


def acknowledgment_text(text: str, website_url: str) -> str:
    return f"""I understand: "{escape(text)}"

<b>Try these commands:</b>
/weather - Check weather
/market - Market prices
/help - All commands

Or visit: {escape(website_url)}"""


def link_code_text(code: str, ttl_minutes: int, product_name: str) -> str:
    return f"""🔗 <b>Your linking code</b>

<b>{escape(code)}</b>

Enter this code in the {escape(product_name)} app to connect your account.
⏳ The code expires in {ttl_minutes} minutes and works once."""


def link_unavailable_text() -> str:
    return "⚠️ Account linking is not available right now. Please try again later."


def unlink_text(removed: int) -> str:
    if removed:
        return "✅ This chat is no longer linked to your app account."
    return "ℹ️ This chat was not linked to any app account."


def link_confirmation_text(product_name: str) -> str:
    return (
        f"✅ <b>Your Telegram is linked to {escape(product_name)}!</b>\n\n"
        "You will now receive weather alerts, market updates and crop reminders here."
    )
