import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import crud
import errors
import logic
import models
import schemas
from prompts import DEFAULT_INSTRUCTION_TEMPLATE

RESUME_R = "\\documentclass{article}\n\\begin{document}\nR: Backend developer, Python \\& Go\n\\end{document}"

MODEL_ANSWER = {
    "optimized_latex": "\\documentclass{article}\n\\begin{document}\nR: Backend developer, Go, Kubernetes\n\\end{document}",
    "suggestions": "Added Kubernetes keyword to the skills section.",
    "ats_score": 82,
}


def setup_job_and_resume(db: Session, user: models.User, resume: str = RESUME_R):
    crud.set_current_source_document(db, user_id=user.id, kind=models.RESUME, content=resume)
    job = crud.create_job_description(
        db,
        schemas.JobDescriptionCreate(
            title="Backend Engineer",
            company="Acme",
            description="requires Go and Kubernetes.",
        ),
        user_id=user.id,
    )
    return job


def mock_model(answer) -> AsyncMock:
    content = answer if isinstance(answer, str) else json.dumps(answer)
    return AsyncMock(return_value=content)


# --- Happy path --- #

@pytest.mark.asyncio
async def test_end_to_end_optimization_is_persisted(db_session: Session, test_user, test_settings):
    job = setup_job_and_resume(db_session, test_user)
    resume = crud.get_current_source_document(db_session, user_id=test_user.id)

    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)) as mock_request:
        optimization = await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    assert optimization.id is not None
    assert optimization.ats_score == 82
    assert optimization.job_description_id == job.id
    assert optimization.source_document_id == resume.id
    assert optimization.optimized_content == MODEL_ANSWER["optimized_latex"]
    assert optimization.suggestions.startswith("Added Kubernetes keyword")
    assert optimization.job_description.title == "Backend Engineer"
    assert optimization.job_description.company == "Acme"
    assert optimization.source_document.content == RESUME_R

    prompt, settings = mock_request.await_args.args
    assert RESUME_R in prompt
    assert "requires Go and Kubernetes." in prompt
    assert settings is test_settings
    assert crud.count_optimizations_for_user(db_session, test_user.id) == 1


@pytest.mark.asyncio
async def test_missing_settings_row_uses_default_template(db_session: Session, test_user, test_settings):
    job = setup_job_and_resume(db_session, test_user)
    assert crud.get_user_settings(db_session, test_user.id) is None

    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)) as mock_request:
        await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    prompt = mock_request.await_args.args[0]
    assert prompt.startswith(DEFAULT_INSTRUCTION_TEMPLATE)


@pytest.mark.asyncio
async def test_custom_template_replaces_default(db_session: Session, test_user, test_settings):
    job = setup_job_and_resume(db_session, test_user)
    crud.upsert_user_settings(
        db_session,
        test_user.id,
        schemas.UserSettingsUpdate(instruction_template="Only tweak the summary line."),
    )

    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)) as mock_request:
        await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    prompt = mock_request.await_args.args[0]
    assert prompt.startswith("Only tweak the summary line.")
    assert DEFAULT_INSTRUCTION_TEMPLATE not in prompt


@pytest.mark.asyncio
async def test_repeated_runs_create_distinct_records(db_session: Session, test_user, test_settings):
    job = setup_job_and_resume(db_session, test_user)

    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)):
        first = await logic.optimize_for_job(db_session, test_user, job.id, test_settings)
        second = await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    assert first.id != second.id
    assert second.created_at > first.created_at
    history = crud.get_optimizations_for_user(db_session, test_user.id)
    assert [item.id for item in history] == [second.id, first.id]


@pytest.mark.asyncio
async def test_string_job_description_id_is_accepted(db_session: Session, test_user, test_settings):
    job = setup_job_and_resume(db_session, test_user)

    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)):
        optimization = await logic.optimize_for_job(db_session, test_user, str(job.id), test_settings)

    assert optimization.job_description_id == job.id


@pytest.mark.asyncio
async def test_current_cover_letter_is_optimized_alongside(db_session: Session, test_user, test_settings):
    job = setup_job_and_resume(db_session, test_user)
    cover = crud.set_current_source_document(
        db_session, user_id=test_user.id, kind=models.COVER_LETTER, content="Dear hiring manager,"
    )
    answer = dict(MODEL_ANSWER, optimized_cover_letter="Dear Acme team, I ship Go on Kubernetes.")

    with patch("logic.request_optimization", mock_model(answer)) as mock_request:
        optimization = await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    assert "COVER LETTER:\nDear hiring manager," in mock_request.await_args.args[0]
    assert optimization.cover_letter_id == cover.id
    assert optimization.optimized_secondary_content == "Dear Acme team, I ship Go on Kubernetes."


# --- Preconditions, in order --- #

@pytest.mark.asyncio
async def test_unauthenticated_caller_is_rejected_first(db_session: Session, test_settings):
    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)) as mock_request:
        with pytest.raises(errors.Unauthorized):
            await logic.optimize_for_job(db_session, None, None, test_settings)
    mock_request.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("job_description_id", [None, ""])
async def test_missing_job_description_id_is_bad_request(db_session: Session, test_user, test_settings, job_description_id):
    # Checked before the server configuration
    test_settings.openai_api_key = None
    with pytest.raises(errors.BadRequest, match="jobDescriptionId"):
        await logic.optimize_for_job(db_session, test_user, job_description_id, test_settings)


@pytest.mark.asyncio
async def test_missing_model_key_is_service_unavailable(db_session: Session, test_user, test_settings):
    test_settings.openai_api_key = None
    # Checked before the job description lookup
    with pytest.raises(errors.ServiceUnavailable):
        await logic.optimize_for_job(db_session, test_user, 999999, test_settings)


@pytest.mark.asyncio
async def test_unknown_job_description_is_not_found(db_session: Session, test_user, test_settings):
    setup_job_and_resume(db_session, test_user)
    with pytest.raises(errors.NotFound, match="Job description"):
        await logic.optimize_for_job(db_session, test_user, 999999, test_settings)
    with pytest.raises(errors.NotFound, match="Job description"):
        await logic.optimize_for_job(db_session, test_user, "not-an-id", test_settings)


@pytest.mark.asyncio
async def test_other_users_job_description_is_not_found(db_session: Session, test_user, test_settings):
    other = models.User(email="other-owner@example.com", auth_sub="sub-other-owner")
    db_session.add(other)
    db_session.commit()
    foreign_job = setup_job_and_resume(db_session, other)
    crud.set_current_source_document(db_session, user_id=test_user.id, kind=models.RESUME, content=RESUME_R)

    with pytest.raises(errors.NotFound):
        await logic.optimize_for_job(db_session, test_user, foreign_job.id, test_settings)
    assert crud.count_optimizations_for_user(db_session, test_user.id) == 0


@pytest.mark.asyncio
async def test_missing_current_resume_is_not_found(db_session: Session, test_user, test_settings):
    job = crud.create_job_description(
        db_session,
        schemas.JobDescriptionCreate(title="Data Engineer", description="Spark"),
        user_id=test_user.id,
    )
    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)) as mock_request:
        with pytest.raises(errors.NotFound, match="resume"):
            await logic.optimize_for_job(db_session, test_user, job.id, test_settings)
    mock_request.assert_not_awaited()


# --- Upstream failures write nothing --- #

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "answer, expected",
    [
        ({k: v for k, v in MODEL_ANSWER.items() if k != "ats_score"}, errors.IncompleteUpstreamResponse),
        ({k: v for k, v in MODEL_ANSWER.items() if k != "suggestions"}, errors.IncompleteUpstreamResponse),
        ({k: v for k, v in MODEL_ANSWER.items() if k != "optimized_latex"}, errors.IncompleteUpstreamResponse),
        ("this is not json", errors.MalformedUpstreamResponse),
        ("[1, 2, 3]", errors.MalformedUpstreamResponse),
        (dict(MODEL_ANSWER, ats_score="excellent"), errors.MalformedUpstreamResponse),
        (dict(MODEL_ANSWER, ats_score=10 ** 400), errors.MalformedUpstreamResponse),
    ],
)
async def test_bad_model_answers_write_nothing(db_session: Session, test_user, test_settings, answer, expected):
    job = setup_job_and_resume(db_session, test_user)

    with patch("logic.request_optimization", mock_model(answer)):
        with pytest.raises(expected):
            await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    assert crud.count_optimizations_for_user(db_session, test_user.id) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", [errors.UpstreamError("OpenAI API error: 500"), errors.Timeout("too slow")])
async def test_model_call_failures_propagate_without_writes(db_session: Session, test_user, test_settings, failure):
    job = setup_job_and_resume(db_session, test_user)

    with patch("logic.request_optimization", AsyncMock(side_effect=failure)):
        with pytest.raises(type(failure)):
            await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    assert crud.count_optimizations_for_user(db_session, test_user.id) == 0


@pytest.mark.asyncio
async def test_store_failure_rolls_back_and_propagates(db_session: Session, test_user, test_settings):
    job = setup_job_and_resume(db_session, test_user)
    failure = OperationalError("INSERT INTO optimizations", {}, Exception("database is locked"))

    with patch("logic.request_optimization", mock_model(MODEL_ANSWER)), \
            patch("crud.create_optimization", side_effect=failure):
        with pytest.raises(OperationalError):
            await logic.optimize_for_job(db_session, test_user, job.id, test_settings)

    assert crud.count_optimizations_for_user(db_session, test_user.id) == 0


# --- Response validation --- #

@pytest.mark.parametrize(
    "raw, expected",
    [(82, 82), ("82", 82), ("82%", 82), (81.6, 82), (140, 100), (-5, 0), ("0", 0)],
)
def test_normalize_ats_score(raw, expected):
    assert logic.normalize_ats_score(raw) == expected


@pytest.mark.parametrize("raw", [True, None, [82], "n/a", float("nan"), 10 ** 400, "9" * 400])
def test_normalize_ats_score_rejects_non_numeric(raw):
    with pytest.raises(errors.MalformedUpstreamResponse):
        logic.normalize_ats_score(raw)


def test_suggestion_lists_are_joined_as_bullets():
    raw = json.dumps(
        {
            "optimized_latex": "\\section{Skills}",
            "suggestions": ["Add Kubernetes", "Quantify latency wins"],
            "ats_score": "75",
        }
    )
    result = logic.parse_optimization_response(raw)
    assert result.suggestions == "- Add Kubernetes\n- Quantify latency wins"
    assert result.ats_score == 75
    assert result.optimized_secondary_content is None


def test_optimized_content_alias_is_accepted():
    raw = json.dumps({"optimized_content": "body", "suggestions": "s", "ats_score": 10})
    assert logic.parse_optimization_response(raw).optimized_content == "body"
