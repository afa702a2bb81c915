"""
Study Tools — the study-planning capabilities offered to the model.

Each tool is a handler function plus a ToolDefinition whose description
doubles as the prompt telling the model when to use it. Argument names are
camelCase because they are what the model sees and emits.

Handlers never touch the conversation log themselves: they return a
ToolOutput, and the harness appends exactly one tool_result message carrying
the text and any metadata.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import Any

from studybuddy.errors import FieldViolation, SchemaValidationError
from studybuddy.tools.context import ToolContext, ToolOutput
from studybuddy.tools.registry import ToolDefinition, ToolRegistry

DEFAULT_BREAK_MINUTES = 5


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def create_flashcards(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    subject = arguments["subject"]
    topic = arguments["topic"]
    cards = [{"question": c["question"], "answer": c["answer"]} for c in arguments["cards"]]
    set_id = _short_id("flashcard")
    record = {
        "id": set_id,
        "subject": subject,
        "topic": topic,
        "cards": cards,
        "createdAt": context.now().isoformat(),
    }
    return ToolOutput(
        text=(
            f'Created flashcard set "{topic}" for {subject} '
            f"with {len(cards)} cards. ID: {set_id}"
        ),
        metadata={"flashcards": record},
    )


def start_study_session(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    subject = arguments["subject"]
    duration = arguments["durationMinutes"]
    break_minutes = arguments.get("breakMinutes", DEFAULT_BREAK_MINUTES)
    ends_at = context.now() + timedelta(minutes=duration)
    session_id = _short_id("study")
    return ToolOutput(
        text=(
            f"Study session started for {subject}\n"
            f"Duration: {duration:g} minutes\n"
            f"Break after: {break_minutes:g} minutes\n"
            f"Session ends at: {ends_at.strftime('%H:%M:%S')} UTC\n"
            f"Session ID: {session_id}"
        )
    )


def generate_quiz(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    quiz_id = _short_id("quiz")
    return ToolOutput(
        text=(
            f'Generated {arguments["difficulty"]} quiz on "{arguments["topic"]}"\n'
            f"Questions: {arguments['numberOfQuestions']}\n"
            f"Quiz ID: {quiz_id}\n"
            "Ready to start the quiz!"
        )
    )


def log_study_progress(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    subject = arguments["subject"]
    hours = arguments["hoursStudied"]
    topics = list(arguments["topicsCovered"])
    level = arguments["understandingLevel"]
    record = {
        "subject": subject,
        "hoursStudied": hours,
        "topicsCovered": topics,
        "understandingLevel": level,
        "date": context.now().isoformat(),
    }
    return ToolOutput(
        text=(
            f"Logged {hours:g} hours for {subject}\n"
            f"Topics covered: {', '.join(topics)}\n"
            f"Understanding level: {level}"
        ),
        metadata={"studyLog": record},
    )


def days_until(exam_date: date, today: date) -> int:
    """Whole days from *today* to *exam_date*."""
    return (exam_date - today).days


def create_exam_plan(arguments: dict[str, Any], context: ToolContext) -> ToolOutput:
    exam_name = arguments["examName"]
    raw_date = arguments["examDate"]
    subjects = list(arguments["subjects"])

    remaining = days_until(date.fromisoformat(raw_date), context.now().date())
    if remaining <= 0:
        # A plan needs at least one study day before the exam.
        raise SchemaValidationError(
            "create_exam_plan",
            [FieldViolation("examDate", f"must be after today ({context.now().date().isoformat()})")],
        )

    per_subject = remaining // len(subjects)
    return ToolOutput(
        text=(
            f'Exam Preparation Plan for "{exam_name}"\n'
            f"Exam Date: {raw_date} ({remaining} days away)\n"
            f"Subjects: {', '.join(subjects)}\n"
            f"Current level: {arguments['currentKnowledgeLevel']}\n"
            f"Recommended: {per_subject} days per subject\n"
            "Plan created successfully!"
        )
    )


def register_study_tools(registry: ToolRegistry) -> None:
    """Register the five study tools."""

    registry.register(
        ToolDefinition(
            name="create_flashcards",
            description=(
                "Create a set of flashcards for studying a topic. Use this when the "
                "user wants to memorise facts or asks for flashcards; write clear, "
                "self-contained questions with short answers."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "subject": {"type": "string", "minLength": 1, "description": "Subject, e.g. 'Biology'."},
                    "topic": {"type": "string", "minLength": 1, "description": "Topic within the subject."},
                    "cards": {
                        "type": "array",
                        "minItems": 1,
                        "description": "The flashcards in study order.",
                        "items": {
                            "type": "object",
                            "properties": {
                                "question": {"type": "string", "minLength": 1},
                                "answer": {"type": "string", "minLength": 1},
                            },
                            "required": ["question", "answer"],
                            "additionalProperties": False,
                        },
                    },
                },
                "required": ["subject", "topic", "cards"],
                "additionalProperties": False,
            },
            handler=create_flashcards,
            category="study",
        )
    )

    registry.register(
        ToolDefinition(
            name="start_study_session",
            description=(
                "Start a timed study session with breaks (Pomodoro technique). "
                "Use this when the user says they are about to study."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "subject": {"type": "string", "minLength": 1},
                    "durationMinutes": {
                        "type": "number",
                        "exclusiveMinimum": 0,
                        "maximum": 480,
                        "description": "Length of the session in minutes.",
                    },
                    "breakMinutes": {
                        "type": "number",
                        "minimum": 0,
                        "maximum": 120,
                        "default": DEFAULT_BREAK_MINUTES,
                        "description": "Break length in minutes. Default 5.",
                    },
                },
                "required": ["subject", "durationMinutes"],
                "additionalProperties": False,
            },
            handler=start_study_session,
            category="study",
        )
    )

    registry.register(
        ToolDefinition(
            name="generate_quiz",
            description=(
                "Generate a quiz based on study material or a topic. At most 20 "
                "questions per quiz."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "topic": {"type": "string", "minLength": 1},
                    "numberOfQuestions": {"type": "integer", "minimum": 1, "maximum": 20},
                    "difficulty": {"type": "string", "enum": ["easy", "medium", "hard"]},
                },
                "required": ["topic", "numberOfQuestions", "difficulty"],
                "additionalProperties": False,
            },
            handler=generate_quiz,
            category="study",
        )
    )

    registry.register(
        ToolDefinition(
            name="log_study_progress",
            description=(
                "Log the user's study progress and track hours studied per subject. "
                "Only log what the user actually reported."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "subject": {"type": "string", "minLength": 1},
                    "hoursStudied": {"type": "number", "exclusiveMinimum": 0, "maximum": 24},
                    "topicsCovered": {"type": "array", "items": {"type": "string"}},
                    "understandingLevel": {
                        "type": "string",
                        "enum": ["beginner", "intermediate", "advanced"],
                    },
                },
                "required": ["subject", "hoursStudied", "topicsCovered", "understandingLevel"],
                "additionalProperties": False,
            },
            handler=log_study_progress,
            category="study",
        )
    )

    registry.register(
        ToolDefinition(
            name="create_exam_plan",
            description=(
                "Create a study plan leading up to an exam date. The exam date must "
                "be an ISO date (YYYY-MM-DD) after today."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "examName": {"type": "string", "minLength": 1},
                    "examDate": {"type": "string", "format": "date"},
                    "subjects": {"type": "array", "minItems": 1, "items": {"type": "string"}},
                    "currentKnowledgeLevel": {"type": "string", "enum": ["low", "medium", "high"]},
                },
                "required": ["examName", "examDate", "subjects", "currentKnowledgeLevel"],
                "additionalProperties": False,
            },
            handler=create_exam_plan,
            category="study",
        )
    )
