from typing import Optional, Any, Dict
import os

from fastapi import (
    Depends, FastAPI, Form, File, Header, Query, Request, UploadFile
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from rifas.api.schemas import (
    BulkRequest, BulkResponse, CreateRaffleRequest, DrawRequest, ExtendRequest,
    OrderResultOut, ProofResponse, RejectRequest, ReserveRandomRequest,
    ReserveRequest, ReserveResponse, SampleRequest, SetStatusRequest,
    SubmitProofRequest,
)
from rifas.core.errors import ErrorCode, MissingReferenceCode, PermissionDenied, RaffleError
from rifas.core.logger import get_logger, setup_logger
from rifas.core.settings import Settings, settings
from rifas.domain import Buyer, Draw, Raffle, ReferenceCode, RequestContext, Role, TicketView
from rifas.services import RaffleEngine, build_engine
from rifas.services.approvals import BulkResult, OrderResult
from rifas.services.cloudinary_uploader import upload_file
from rifas.services.utils import mask_email

logger = get_logger(__name__)

_STATUS_BY_CODE = {
    ErrorCode.INSUFFICIENT_AVAILABILITY: 409,
    ErrorCode.MISSING_REFERENCE_CODE: 400,
    ErrorCode.ASSOCIATION_FAILURE: 404,
    ErrorCode.CONCURRENT_APPROVAL_CONFLICT: 409,
    ErrorCode.RAFFLE_NOT_FOUND: 404,
    ErrorCode.RAFFLE_NOT_OPEN: 409,
    ErrorCode.INVALID_TICKET_SELECTION: 400,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.ENTITLEMENT_EXCEEDED: 403,
    ErrorCode.NO_ELIGIBLE_TICKETS: 409,
    ErrorCode.AMBIGUOUS_DRAW: 409,
    ErrorCode.PRIZE_UNAVAILABLE: 409,
    ErrorCode.DRAW_NOT_FOUND: 404,
    ErrorCode.STORAGE_ERROR: 503,
    ErrorCode.CONFIGURATION_ERROR: 503,
    ErrorCode.INVALID_REQUEST: 400,
}


# ---------------- Dependencias ----------------
def get_engine(request: Request) -> RaffleEngine:
    return request.app.state.engine


def request_context(
    request: Request,
    x_admin_key: str = Header(default=""),
    x_org_id: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
) -> RequestContext:
    """Sin clave válida se actúa como comprador anónimo."""
    cfg: Settings = request.app.state.settings
    if not cfg.admin_api_key or x_admin_key != cfg.admin_api_key:
        return RequestContext.buyer()
    role = Role.STAFF if x_org_id else Role.ADMIN
    return RequestContext(actor_id=x_actor_id or "admin", organization_id=x_org_id, role=role)


def require_staff(ctx: RequestContext = Depends(request_context)) -> RequestContext:
    if not ctx.is_staff:
        raise PermissionDenied("Admin key inválida")
    return ctx


# ---------------- Serialización ----------------
def _raffle_out(raffle: Raffle) -> Dict[str, Any]:
    out = raffle.to_row()
    out["prizes"] = [p.to_dict() for p in raffle.effective_prizes()]
    return out


def _ticket_out(view: TicketView, staff: bool) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "number": view.number,
        "ticket_number": view.ticket_number,
        "status": view.status.value,
        "buyer_name": view.buyer_name,
        "buyer_city": view.buyer_city,
        "reserved_until": view.reserved_until,
    }
    # la clave de reserva es la llave del comprador: solo el staff la ve
    if staff:
        out["payment_reference"] = view.payment_reference
    return out


def _draw_out(draw: Draw, staff: bool) -> Dict[str, Any]:
    out = draw.to_row()
    if not staff:
        out["winner_email"] = mask_email(draw.winner.email) if draw.winner.email else None
        out["winner_phone"] = None
    return out


def _order_out(result: OrderResult) -> OrderResultOut:
    return OrderResultOut(
        reference_code=result.reference_code,
        outcome=result.outcome,
        ticket_numbers=list(result.ticket_numbers),
        reserved_until=result.reserved_until,
        message=result.message,
    )


def _bulk_out(result: BulkResult) -> BulkResponse:
    return BulkResponse(
        succeeded=result.succeeded,
        failed=result.failed,
        results=[_order_out(r) for r in result.results],
        errors=result.errors,
    )


def _buyer(data) -> Buyer:
    return Buyer(name=data.name, email=str(data.email), phone=data.phone, city=data.city)


def create_app(engine: Optional[RaffleEngine] = None, cfg: Settings = settings) -> FastAPI:
    setup_logger("rifas", level=cfg.log_level, log_file=cfg.log_file or None)
    engine = engine or build_engine(cfg)

    app = FastAPI(title="Rifas Engine API", version="4.0.0")
    app.state.engine = engine
    app.state.settings = cfg

    # ---------------- CORS ----------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RaffleError)
    async def raffle_error_handler(request: Request, exc: RaffleError):
        status = _STATUS_BY_CODE.get(exc.code, 400)
        if status >= 500:
            logger.error("%s %s -> %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content=exc.to_dict())

    # ---------------- Salud ----------------
    @app.get("/health")
    def health(eng: RaffleEngine = Depends(get_engine)):
        return {
            "status": "ok",
            "store": type(eng.store).__name__,
            "sweeper_running": eng.sweeper.running,
            "pending_notifications": eng.outbox.pending(),
        }

    # ---------------- Rifas ----------------
    @app.post("/raffles", status_code=201)
    def create_raffle(
        req: CreateRaffleRequest,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        raffle = eng.raffles.create_raffle(
            ctx,
            title=req.title,
            total_tickets=req.total_tickets,
            ticket_price=req.ticket_price,
            currency=req.currency,
            prizes=[p.model_dump() for p in req.prizes],
            ticket_digits=req.ticket_digits,
            reservation_minutes=req.reservation_minutes,
            draw_date=req.draw_date,
            status=req.status,
            raffle_id=req.id,
        )
        return _raffle_out(raffle)

    @app.get("/raffles/{raffle_id}")
    def get_raffle(raffle_id: str, eng: RaffleEngine = Depends(get_engine)):
        raffle = eng.raffles.get(raffle_id)
        out = _raffle_out(raffle)
        out["counts"] = eng.inventory.counts(raffle_id).__dict__
        return out

    @app.post("/raffles/{raffle_id}/status")
    def set_raffle_status(
        raffle_id: str,
        req: SetStatusRequest,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        return _raffle_out(eng.raffles.set_status(ctx, raffle_id, req.status))

    # ---------------- Inventario ----------------
    @app.get("/raffles/{raffle_id}/counts")
    def raffle_counts(raffle_id: str, eng: RaffleEngine = Depends(get_engine)):
        return {"raffle_id": raffle_id, **eng.inventory.counts(raffle_id).__dict__}

    @app.get("/raffles/{raffle_id}/tickets")
    def list_tickets(
        raffle_id: str,
        status: str = Query(default="all"),
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=100, ge=1),
        ctx: RequestContext = Depends(request_context),
        eng: RaffleEngine = Depends(get_engine),
    ):
        p = eng.inventory.list_page(raffle_id, status, page, page_size)
        return {
            "raffle_id": raffle_id,
            "status": status,
            "page": p.page,
            "page_size": p.page_size,
            "total": p.total,
            "pages": p.pages,
            "tickets": [_ticket_out(v, ctx.is_staff) for v in p.items],
        }

    @app.get("/raffles/{raffle_id}/tickets/{ticket_number}")
    def ticket_status(
        raffle_id: str,
        ticket_number: str,
        ctx: RequestContext = Depends(request_context),
        eng: RaffleEngine = Depends(get_engine),
    ):
        return _ticket_out(eng.inventory.status(raffle_id, ticket_number), ctx.is_staff)

    # ---------------- Reservas ----------------
    @app.post("/raffles/{raffle_id}/reserve", response_model=ReserveResponse, status_code=201)
    def reserve(raffle_id: str, req: ReserveRequest, eng: RaffleEngine = Depends(get_engine)):
        res = eng.reservations.reserve(
            raffle_id, req.ticket_numbers, _buyer(req.buyer), req.ttl_minutes, req.order_total
        )
        return ReserveResponse(
            reference_code=res.reference_code,
            raffle_id=res.raffle_id,
            reserved_until=res.reserved_until,
            ticket_numbers=list(res.ticket_numbers),
        )

    @app.post("/raffles/{raffle_id}/reserve/random", response_model=ReserveResponse, status_code=201)
    def reserve_random(raffle_id: str, req: ReserveRandomRequest, eng: RaffleEngine = Depends(get_engine)):
        res = eng.reservations.reserve_random(
            raffle_id, req.quantity, _buyer(req.buyer), req.ttl_minutes, req.order_total
        )
        return ReserveResponse(
            reference_code=res.reference_code,
            raffle_id=res.raffle_id,
            reserved_until=res.reserved_until,
            ticket_numbers=list(res.ticket_numbers),
        )

    @app.post("/raffles/{raffle_id}/sample")
    def sample(raffle_id: str, req: SampleRequest, eng: RaffleEngine = Depends(get_engine)):
        return {"ticket_numbers": eng.sampler.sample_available(raffle_id, req.count, req.exclude)}

    # ---------------- Comprobantes ----------------
    @app.post("/raffles/{raffle_id}/proof", response_model=ProofResponse)
    def submit_proof(raffle_id: str, req: SubmitProofRequest, eng: RaffleEngine = Depends(get_engine)):
        r = eng.proofs.submit_proof(
            raffle_id, req.reference_code, req.proof_url, str(req.email) if req.email else None
        )
        return ProofResponse(reference_code=r.reference_code, updated=r.updated, replaced_previous=r.replaced_previous)

    @app.post("/raffles/{raffle_id}/proof/upload", response_model=ProofResponse)
    async def upload_proof(
        raffle_id: str,
        reference_code: str = Form(default=""),
        email: Optional[str] = Form(default=None),
        file: UploadFile = File(...),
        eng: RaffleEngine = Depends(get_engine),
    ):
        # validar la clave antes de subir nada
        if not ReferenceCode.normalize(reference_code):
            raise MissingReferenceCode()
        eng.raffles.get(raffle_id)
        url = await upload_file(file, eng.cfg)
        r = eng.proofs.submit_proof(raffle_id, reference_code, url, email)
        return ProofResponse(reference_code=r.reference_code, updated=r.updated, replaced_previous=r.replaced_previous)

    # ---------------- Aprobaciones (staff) ----------------
    @app.post("/raffles/{raffle_id}/orders/approve", response_model=BulkResponse)
    def bulk_approve(
        raffle_id: str,
        req: BulkRequest,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        return _bulk_out(eng.approvals.bulk_approve(ctx, raffle_id, req.reference_codes))

    @app.post("/raffles/{raffle_id}/orders/reject", response_model=BulkResponse)
    def bulk_reject(
        raffle_id: str,
        req: BulkRequest,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        return _bulk_out(eng.approvals.bulk_reject(ctx, raffle_id, req.reference_codes, req.reason))

    @app.post("/raffles/{raffle_id}/orders/{reference_code}/approve", response_model=OrderResultOut)
    def approve_order(
        raffle_id: str,
        reference_code: str,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        return _order_out(eng.approvals.approve(ctx, raffle_id, reference_code))

    @app.post("/raffles/{raffle_id}/orders/{reference_code}/reject", response_model=OrderResultOut)
    def reject_order(
        raffle_id: str,
        reference_code: str,
        req: Optional[RejectRequest] = None,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        reason = req.reason if req else None
        return _order_out(eng.approvals.reject(ctx, raffle_id, reference_code, reason))

    @app.post("/raffles/{raffle_id}/orders/{reference_code}/cancel", response_model=OrderResultOut)
    def cancel_order(
        raffle_id: str,
        reference_code: str,
        req: Optional[RejectRequest] = None,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        reason = req.reason if req else None
        return _order_out(eng.approvals.cancel(ctx, raffle_id, reference_code, reason))

    @app.post("/raffles/{raffle_id}/orders/{reference_code}/extend", response_model=OrderResultOut)
    def extend_order(
        raffle_id: str,
        reference_code: str,
        req: Optional[ExtendRequest] = None,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        minutes = req.minutes if req else 30
        return _order_out(eng.approvals.extend(ctx, raffle_id, reference_code, minutes))

    # ---------------- Consultas ----------------
    @app.get("/orders/lookup")
    def lookup_orders(
        raffle_id: Optional[str] = Query(default=None),
        reference_code: Optional[str] = Query(default=None),
        email: Optional[str] = Query(default=None),
        phone: Optional[str] = Query(default=None),
        eng: RaffleEngine = Depends(get_engine),
    ):
        orders = eng.orders.find_orders(raffle_id, reference_code, email, phone)
        return {"orders": [o.__dict__ for o in orders]}

    @app.get("/raffles/{raffle_id}/revenue")
    def revenue(
        raffle_id: str,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        r = eng.orders.revenue(ctx, raffle_id)
        return {
            "raffle_id": r.raffle_id,
            "currency": r.currency,
            "orders": r.orders,
            "tickets_sold": r.tickets_sold,
            "total": str(r.total),
        }

    @app.get("/raffles/{raffle_id}/buyers.csv")
    def buyers_csv(
        raffle_id: str,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        csv_text = eng.orders.export_buyers_csv(ctx, raffle_id)
        return Response(
            content=csv_text,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="compradores-{raffle_id}.csv"'},
        )

    # ---------------- Sorteo ----------------
    @app.get("/raffles/{raffle_id}/draws")
    def list_draws(
        raffle_id: str,
        ctx: RequestContext = Depends(request_context),
        eng: RaffleEngine = Depends(get_engine),
    ):
        draws = eng.draws.list_draws(raffle_id)
        return {
            "draws": [_draw_out(d, ctx.is_staff) for d in draws],
            "remaining_prizes": [p.to_dict() for p in eng.draws.remaining_prizes(raffle_id)],
        }

    @app.post("/raffles/{raffle_id}/draws", status_code=201)
    def select_winner(
        raffle_id: str,
        req: DrawRequest,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        draw = eng.draws.select_winner(
            ctx,
            raffle_id,
            req.method,
            prize_id=req.prize_id,
            draw_type=req.draw_type,
            ticket=req.ticket_number,
            lottery_number=req.lottery_number,
            digits=req.digits,
        )
        return _draw_out(draw, staff=True)

    @app.get("/raffles/{raffle_id}/draws/lottery-matches")
    def lottery_matches(
        raffle_id: str,
        draw_number: str = Query(...),
        digits: Optional[int] = Query(default=None),
        eng: RaffleEngine = Depends(get_engine),
    ):
        suffix, matches = eng.draws.lottery_matches(raffle_id, draw_number, digits)
        return {"suffix": suffix, "matches": matches}

    @app.post("/raffles/{raffle_id}/draws/{draw_id}/announce")
    def announce_draw(
        raffle_id: str,
        draw_id: str,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        return _draw_out(eng.draws.announce(ctx, raffle_id, draw_id), staff=True)

    @app.delete("/raffles/{raffle_id}/draws/{draw_id}")
    def delete_draw(
        raffle_id: str,
        draw_id: str,
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        eng.draws.delete_draw(ctx, raffle_id, draw_id)
        return {"ok": True}

    # ---------------- Admin ----------------
    @app.post("/admin/cleanup_reservations")
    def admin_cleanup_reservations(
        raffle_id: Optional[str] = Query(default=None),
        ctx: RequestContext = Depends(require_staff),
        eng: RaffleEngine = Depends(get_engine),
    ):
        """Limpia reservas vencidas (la lectura ya las trata como libres)."""
        removed = eng.reclaimer.sweep(raffle_id)
        return {"ok": True, "removed": removed}

    # ---------------- Tareas de fondo ----------------
    @app.on_event("startup")
    def start_background():
        app.state.engine.start()

    @app.on_event("shutdown")
    def stop_background():
        app.state.engine.stop()

    return app


app = create_app()


# --------- Ejecutable local ---------
if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("rifas.app:app", host="0.0.0.0", port=port, proxy_headers=True)
