"""Prompt text for the résumé optimizer and the function that assembles it.

The user prompt is laid out as instructions, then the résumé source, then the
job description (plus an optional cover letter), then the output format. The
source text is inserted verbatim; escaping LaTeX is the model's job on output.
"""
from typing import Optional

import models


SYSTEM_PROMPT = "You are an expert ATS resume optimizer. Always respond with valid JSON."

DEFAULT_INSTRUCTION_TEMPLATE = """You are an expert ATS (Applicant Tracking System) resume optimizer.

Given the following LaTeX resume and job description, optimize the resume to maximize ATS compatibility while maintaining authenticity.

INSTRUCTIONS:
1. Identify key keywords and phrases from the job description
2. Modify the LaTeX resume to incorporate these keywords naturally
3. Adjust bullet points to align with job requirements
4. Maintain LaTeX formatting integrity
5. Keep the changes truthful - don't fabricate experience
6. Provide an ATS compatibility score (0-100)
7. Include specific suggestions for improvement
8. CRITICAL: Properly escape all special LaTeX characters in the output:
   - Use \\& instead of & (ampersand)
   - Use \\$ instead of $ (dollar sign)
   - Use \\% instead of % (percent)
   - Use \\# instead of # (hash)
   - Use \\_ instead of _ (underscore)
   - Use \\{ and \\} instead of { } (braces)
   - Use \\textasciitilde{} instead of ~ (tilde)
   - Use \\textasciicircum{} instead of ^ (caret)
   - Use \\textbackslash{} instead of \\ (backslash in text)"""

OUTPUT_FORMAT = """OUTPUT FORMAT:
Return a JSON object with these fields:
- optimized_latex: The complete optimized LaTeX resume
- suggestions: A detailed explanation of changes made
- ats_score: A number between 0-100 representing ATS compatibility"""

COVER_LETTER_OUTPUT_FORMAT = """- optimized_cover_letter: The complete cover letter in LaTeX, tailored to the job description"""


def resolve_instruction_template(user_settings: Optional[models.UserSettings]) -> str:
    """Return the user's saved template, or the default when none is saved."""
    if user_settings is None:
        return DEFAULT_INSTRUCTION_TEMPLATE
    template = (user_settings.instruction_template or "").strip()
    return template or DEFAULT_INSTRUCTION_TEMPLATE


def compose_optimization_prompt(
    instruction_template: str,
    source_content: str,
    job_description: models.JobDescription,
    cover_letter_content: Optional[str] = None,
) -> str:
    sections = [
        instruction_template,
        f"RESUME:\n{source_content}",
        (
            "JOB DESCRIPTION:\n"
            f"Title: {job_description.title}\n"
            f"Company: {job_description.company or 'Not specified'}\n"
            f"Description: {job_description.description}"
        ),
    ]

    output_format = OUTPUT_FORMAT
    if cover_letter_content:
        sections.append(f"COVER LETTER:\n{cover_letter_content}")
        output_format = f"{OUTPUT_FORMAT}\n{COVER_LETTER_OUTPUT_FORMAT}"
    sections.append(output_format)

    return "\n\n".join(sections)
