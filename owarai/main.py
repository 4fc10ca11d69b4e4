from __future__ import annotations

import html
import logging
from io import StringIO
from typing import List, Optional

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from pydantic import ValidationError

from . import stats
from .config import DB_PATH, LOG_LEVEL
from .db import Forbidden, NotFound, Store
from .models import (
    Competition,
    JudgeStatus,
    OverallAnalysis,
    Performer,
    Round,
    RoundAnalysis,
    ScoreInput,
    ScoreRecord,
    ViewingMode,
)
from .ordering import display_order, viewing_queue

logger = logging.getLogger(__name__)

app = FastAPI()

_store = Store(DB_PATH)


def get_store() -> Store:
    return _store


@app.on_event("startup")
def _startup():
    logging.basicConfig(level=LOG_LEVEL)
    get_store().init_db()


@app.exception_handler(NotFound)
def _not_found(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(Forbidden)
def _forbidden(request: Request, exc: Forbidden):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


# -----------------------
# Helpers
# -----------------------
def round_of(store: Store, competition_id: int, round_id: int) -> Round:
    rnd = store.get_round(round_id)
    if rnd.competition_id != competition_id:
        raise NotFound("Round not found.")
    return rnd


def visible_judges(store: Store, competition_id: int, viewer_id: int) -> set:
    return stats.eligible_judges(store.list_judge_status(competition_id), viewer_id)


def page(title: str, body: str) -> HTMLResponse:
    doc = f"""
    <html>
      <head>
        <title>{title}</title>
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <style>
          body {{ font-family: system-ui, Arial; max-width: 980px; margin: 0 auto; padding: 22px; }}
          .card {{ border: 1px solid #ddd; border-radius: 12px; padding: 16px; margin: 16px 0; }}
          table {{ border-collapse: collapse; width: 100%; }}
          th, td {{ border: 1px solid #ddd; padding: 8px; }}
          th {{ text-align: left; background: #f7f7f7; }}
          .muted {{ color: #666; }}
          .pill {{ display:inline-block; padding:4px 10px; border:1px solid #ddd; border-radius:999px; }}
        </style>
      </head>
      <body>
        <h1>{title}</h1>
        {body}
      </body>
    </html>
    """
    return HTMLResponse(doc)


@app.get("/", response_class=HTMLResponse)
def home():
    return page(
        "Owarai Judging",
        """
        <div class="card">
          <p class="muted">
            Score every act 0-100 as you watch. Watching a recording? Pick delayed mode and
            the running order is shuffled so it gives nothing away.
          </p>
        </div>
        """,
    )


# -----------------------
# Routes: Admin
# -----------------------
@app.post("/admin/competitions", response_model=Competition)
def admin_create(
    type: str = Form(...),
    year: int = Form(...),
    name: str = Form(...),
    admin_password: str = Form(...),
    store: Store = Depends(get_store),
):
    try:
        return store.create_competition(type, year, name, admin_password)
    except ValueError as e:
        raise HTTPException(422, str(e))


@app.get("/competitions/{competition_id}/rounds", response_model=List[Round])
def list_rounds(competition_id: int, store: Store = Depends(get_store)):
    store.get_competition(competition_id)
    return store.list_rounds(competition_id)


@app.post("/admin/rounds/{round_id}/performers", response_model=List[Performer])
def admin_set_performers(
    round_id: int,
    admin_password: str = Form(...),
    names: str = Form(""),
    store: Store = Depends(get_store),
):
    rnd = store.get_round(round_id)
    store.require_admin(rnd.competition_id, admin_password)
    # One name per line (or separated by commas)
    raw = names.replace(",", "\n")
    return store.set_performers(round_id, raw.splitlines())


@app.post("/admin/competitions/{competition_id}/status", response_model=Competition)
def admin_set_status(
    competition_id: int,
    admin_password: str = Form(...),
    status: str = Form(...),
    store: Store = Depends(get_store),
):
    store.require_admin(competition_id, admin_password)
    if status not in ("upcoming", "active", "scoring", "closed"):
        raise HTTPException(422, f"Unknown status: {status}")
    return store.set_status(competition_id, status)


@app.delete("/admin/performers/{performer_id}")
def admin_delete_performer(
    performer_id: int, admin_password: str, store: Store = Depends(get_store)
):
    performer = store.get_performer(performer_id)
    store.require_admin(performer.competition_id, admin_password)
    store.delete_performer(performer_id)
    return {"deleted": performer_id}


# -----------------------
# Routes: Judge
# -----------------------
@app.post("/judge/join")
def judge_join(name: str = Form(...), join_code: str = Form(...), store: Store = Depends(get_store)):
    competition = store.get_competition_by_join_code(join_code)
    if competition.status == "closed":
        raise HTTPException(409, "This competition is closed.")
    try:
        judge, token = store.join(name)
    except ValueError as e:
        raise HTTPException(422, str(e))
    store.ensure_status(judge.id, competition.id)
    logger.info("judge %s joined competition %s", judge.id, competition.id)
    return {"judge_id": judge.id, "token": token, "competition_id": competition.id}


@app.post("/judge/competitions/{competition_id}/viewing_mode", response_model=JudgeStatus)
def judge_viewing_mode(
    competition_id: int,
    judge_id: int = Form(...),
    token: str = Form(...),
    viewing_mode: ViewingMode = Form(...),
    store: Store = Depends(get_store),
):
    store.require_judge(judge_id, token)
    store.get_competition(competition_id)
    return store.set_viewing_mode(judge_id, competition_id, viewing_mode)


@app.get(
    "/judge/competitions/{competition_id}/rounds/{round_id}/queue",
    response_model=List[Performer],
)
def judge_queue(
    competition_id: int,
    round_id: int,
    judge_id: int,
    token: str,
    store: Store = Depends(get_store),
):
    store.require_judge(judge_id, token)
    round_of(store, competition_id, round_id)
    status = store.get_status(judge_id, competition_id)
    mode = status.viewing_mode if status else "realtime"
    return viewing_queue(
        store.list_performers(round_id),
        store.list_scores(competition_id),
        judge_id,
        competition_id,
        round_id,
        mode,
    )


@app.post("/judge/competitions/{competition_id}/scores", response_model=ScoreRecord)
def judge_score(
    competition_id: int,
    judge_id: int = Form(...),
    token: str = Form(...),
    performer_id: int = Form(...),
    score: int = Form(...),
    comment: Optional[str] = Form(None),
    store: Store = Depends(get_store),
):
    store.require_judge(judge_id, token)
    competition = store.get_competition(competition_id)
    if competition.status == "closed":
        raise HTTPException(409, "This competition is closed. Submission rejected.")

    performer = store.get_performer(performer_id)
    if performer.competition_id != competition_id:
        raise NotFound("Performer not found.")

    status = store.ensure_status(judge_id, competition_id)
    try:
        record = ScoreInput(
            judge_id=judge_id,
            performer_id=performer_id,
            round_id=performer.round_id,
            competition_id=competition_id,
            score=score,
            comment=(comment or "").strip() or None,
            is_realtime=status.viewing_mode == "realtime",
        )
    except ValidationError:
        raise HTTPException(422, f"Score out of range for {performer.name}: {score}.")
    return store.upsert_score(record)


@app.post("/judge/competitions/{competition_id}/finalists", response_model=List[Performer])
def judge_finalists(
    competition_id: int,
    judge_id: int = Form(...),
    token: str = Form(...),
    names: List[str] = Form(...),
    store: Store = Depends(get_store),
):
    store.require_judge(judge_id, token)
    store.get_competition(competition_id)
    rounds = store.list_rounds(competition_id)
    if len(rounds) < 2:
        raise HTTPException(409, "This competition has no final round.")

    # Finalists must come from the first-round roster
    roster = {p.name for p in store.list_performers(rounds[0].id)}
    picked = list(dict.fromkeys(n.strip() for n in names if n.strip()))
    unknown = [n for n in picked if n not in roster]
    if unknown:
        raise HTTPException(422, f"Not in the first round: {', '.join(unknown)}")
    return [store.ensure_final_round_performer(competition_id, n) for n in picked]


@app.post("/judge/competitions/{competition_id}/complete", response_model=JudgeStatus)
def judge_complete(
    competition_id: int,
    judge_id: int = Form(...),
    token: str = Form(...),
    store: Store = Depends(get_store),
):
    store.require_judge(judge_id, token)
    store.get_competition(competition_id)
    return store.complete_scoring(judge_id, competition_id)


# -----------------------
# Routes: Results
# -----------------------
@app.get("/results/{competition_id}/rounds/{round_id}", response_model=RoundAnalysis)
def results_round(
    competition_id: int,
    round_id: int,
    judge_id: int,
    token: str,
    store: Store = Depends(get_store),
):
    store.require_judge(judge_id, token)
    round_of(store, competition_id, round_id)
    return stats.round_analysis(
        round_id,
        store.list_scores(competition_id),
        store.list_performers(round_id),
        visible_judges(store, competition_id, judge_id),
    )


@app.get("/results/{competition_id}/rounds/{round_id}/personal")
def results_personal(
    competition_id: int,
    round_id: int,
    judge_id: int,
    token: str,
    store: Store = Depends(get_store),
):
    """The judge's own scores, in the order they scored them."""
    store.require_judge(judge_id, token)
    round_of(store, competition_id, round_id)
    mine = {s.performer_id: s for s in store.list_scores(competition_id) if s.judge_id == judge_id}

    out = []
    for p in display_order(store.list_performers(round_id), mine.values(), judge_id):
        s = mine.get(p.id)
        out.append(
            {
                "performer": p,
                "score": s.score if s else None,
                "comment": s.comment if s else None,
                "scored_at": s.scored_at if s else None,
            }
        )
    return out


@app.get("/results/{competition_id}/overall", response_model=OverallAnalysis)
def results_overall(
    competition_id: int, judge_id: int, token: str, store: Store = Depends(get_store)
):
    store.require_judge(judge_id, token)
    return _overall(store, competition_id, judge_id)


def _overall(store: Store, competition_id: int, viewer_id: int) -> OverallAnalysis:
    store.get_competition(competition_id)
    return stats.overall_analysis(
        competition_id,
        store.list_scores(competition_id),
        store.list_competition_performers(competition_id),
        store.competition_judges(competition_id),
        visible_judges(store, competition_id, viewer_id),
    )


@app.get("/results/{competition_id}/rounds/{round_id}/csv")
def results_csv(
    competition_id: int,
    round_id: int,
    judge_id: int,
    token: str,
    store: Store = Depends(get_store),
):
    store.require_judge(judge_id, token)
    round_of(store, competition_id, round_id)
    eligible = visible_judges(store, competition_id, judge_id)
    judges = [j for j in store.competition_judges(competition_id) if j.id in eligible]

    table = stats.round_score_table(
        store.list_scores(competition_id), store.list_performers(round_id), judges
    )
    buf = StringIO()
    table.to_csv(buf, index=False)
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="competition_{competition_id}_round_{round_id}.csv"'
        },
    )


@app.get("/results/{competition_id}", response_class=HTMLResponse)
def results_page(
    competition_id: int, judge_id: int, token: str, store: Store = Depends(get_store)
):
    store.require_judge(judge_id, token)
    competition = store.get_competition(competition_id)
    analysis = _overall(store, competition_id, judge_id)
    names = {j.id: j.name for j in store.competition_judges(competition_id)}
    esc = html.escape

    perf_rows = "".join(
        f"<tr><td>{s.rank}</td><td>{esc(s.name)}</td><td>{s.mean:.1f}</td><td>{s.std_dev:.1f}</td></tr>"
        for s in analysis.performers
    )
    judge_rows = "".join(
        f"<tr><td>{esc(p.stat.name)}</td><td>{p.type.symbol} {p.type.label}</td>"
        f"<td>{p.stat.mean:.1f}</td><td>{p.stat.std_dev:.1f}</td><td>{p.stat.scored_count}</td></tr>"
        for p in analysis.judges
    )
    corr_rows = "".join(
        f"<tr><td>{esc(names.get(c.judge_a, '-'))} &amp; {esc(names.get(c.judge_b, '-'))}</td>"
        f"<td>{c.pearson_r * 100:.0f}%</td></tr>"
        for c in analysis.correlations
    )

    champ = analysis.champion
    body = f"""
    <div class="card">
      <h2>{esc(competition.name)}</h2>
      <p class="muted">{analysis.total_scores} scores across all rounds</p>
      <p>Champion: <span class="pill">{esc(champ.name) if champ else '-'}</span></p>
    </div>

    <div class="card">
      <h3>Acts</h3>
      <table>
        <thead><tr><th>Rank</th><th>Act</th><th>Average</th><th>SD</th></tr></thead>
        <tbody>{perf_rows or '<tr><td colspan="4" class="muted">No acts yet.</td></tr>'}</tbody>
      </table>
    </div>

    <div class="card">
      <h3>Judges</h3>
      <table>
        <thead><tr><th>Judge</th><th>Type</th><th>Average</th><th>SD</th><th>Scored</th></tr></thead>
        <tbody>{judge_rows or '<tr><td colspan="5" class="muted">No judges yet.</td></tr>'}</tbody>
      </table>
    </div>

    <div class="card">
      <h3>Judge compatibility</h3>
      <table>
        <thead><tr><th>Pair</th><th>Correlation</th></tr></thead>
        <tbody>{corr_rows or '<tr><td colspan="2" class="muted">Need at least two judges.</td></tr>'}</tbody>
      </table>
    </div>
    """
    return page("Results", body)
