from typing import Dict, List

# Independent of the capture-time cap: this one bounds the prompt payload
MAX_PROMPT_HTML_CHARS = 30000

GENERATION_SYSTEM_PROMPT = """You are an expert frontend developer. Your task is to generate a complete, self-contained HTML file that serves as a prototype/demo based on a screenshot and HTML of an existing website.

Requirements:
- Output a single, complete HTML file with inline styles and scripts
- Use the Tailwind CSS CDN via <script src="https://cdn.tailwindcss.com"></script>
- Match the visual style, color scheme, and layout patterns from the screenshot
- Use realistic, contextually appropriate content (not lorem ipsum)
- Make it responsive and visually polished
- Include hover states, transitions, and interactive elements where appropriate
- The HTML must be fully self-contained, with no external dependencies besides the Tailwind CDN

Output format:
- Return ONLY the HTML code wrapped in ```html code fences
- No explanations, no commentary, just the code"""

ITERATION_SYSTEM_PROMPT = """You are an expert frontend developer. You will receive the current HTML of a prototype and a change request from the user.

Requirements:
- Return the complete modified HTML file with the requested changes applied
- Preserve all existing functionality and styling unless the change specifically requires modifications
- Use the Tailwind CSS CDN via <script src="https://cdn.tailwindcss.com"></script>
- Keep the HTML fully self-contained and responsive
- Apply changes precisely as described

Output format:
- Return ONLY the complete modified HTML code wrapped in ```html code fences
- No explanations, no commentary, just the code"""


def build_generation_messages(screenshot: str, html: str, prompt: str) -> List[Dict]:
    """Vision message: the screenshot as inline image data, then the HTML sample and the user goal."""
    html_sample = (html or "")[:MAX_PROMPT_HTML_CHARS]
    return [
        {
            "role": "user",
            "content": [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/png",
                        "data": screenshot,
                    },
                },
                {
                    "type": "text",
                    "text": (
                        f"Here is the HTML structure of the website (truncated):\n\n{html_sample}"
                        f"\n\nUser request: {prompt}"
                    ),
                },
            ],
        }
    ]


def build_iteration_messages(current_html: str, instruction: str) -> List[Dict]:
    return [
        {
            "role": "user",
            "content": (
                f"Here is the current HTML prototype:\n\n```html\n{current_html}\n```"
                f"\n\nPlease make the following changes: {instruction}"
            ),
        }
    ]


def build_deploy_prompt(url: str, title: str, goal: str, html: str) -> str:
    """Compose the copy-paste prompt for rebuilding the prototype inside a real project."""
    return (
        f'I want to rebuild the frontend of {url} ("{title}").\n'
        f"\n"
        f"Here is what I want:\n"
        f"{goal}\n"
        f"\n"
        f"Below is the complete target HTML prototype that shows exactly what it should look like. "
        f"Implement this as a production-quality page in my project, matching the layout, styling, "
        f"colors, typography, and content as closely as possible. Use Tailwind CSS for styling.\n"
        f"\n"
        f"```html\n"
        f"{html}\n"
        f"```"
    )
