#!/usr/bin/env python3
"""Runner de línea de comandos para tareas de operación.

Ejemplos:
  rifas sweep
  rifas counts --raffle-id <id>
  rifas export-buyers --raffle-id <id> --out compradores.csv
  rifas draw --raffle-id <id> --method lottery --lottery-number 48213 --digits 3
  rifas remind
  rifas auto-draw

"""
import argparse
import sys
from typing import List, Optional

from rifas.core.errors import RaffleError
from rifas.core.logger import setup_logger
from rifas.core.settings import settings
from rifas.domain import DrawMethod, DrawType, RequestContext
from rifas.services import RaffleEngine, build_engine


def _cmd_sweep(engine: RaffleEngine, args) -> int:
    removed = engine.reclaimer.sweep(args.raffle_id)
    print(f"Reservas vencidas liberadas: {removed}")
    return 0


def _cmd_counts(engine: RaffleEngine, args) -> int:
    c = engine.inventory.counts(args.raffle_id)
    print(f"Total: {c.total}  Disponibles: {c.available}  Reservados: {c.reserved}  Vendidos: {c.sold}")
    return 0


def _cmd_export(engine: RaffleEngine, args) -> int:
    csv_text = engine.orders.export_buyers_csv(RequestContext.system(), args.raffle_id)
    if args.out:
        with open(args.out, "w", encoding="utf-8", newline="") as fh:
            fh.write(csv_text)
        print(f"CSV escrito en {args.out}")
    else:
        sys.stdout.write(csv_text)
    return 0


def _cmd_draw(engine: RaffleEngine, args) -> int:
    draw = engine.draws.select_winner(
        RequestContext.system(),
        args.raffle_id,
        DrawMethod(args.method),
        prize_id=args.prize_id,
        draw_type=DrawType(args.type),
        ticket=args.ticket,
        lottery_number=args.lottery_number,
        digits=args.digits,
    )
    engine.outbox.drain()
    print(f"Ganador de '{draw.prize_name}': boleto {draw.ticket_number} - {draw.winner.name or 'sin nombre'}")
    return 0


def _cmd_remind(engine: RaffleEngine, args) -> int:
    sent = engine.reminders.run()
    engine.outbox.drain()
    print(f"Recordatorios de pago enviados: {sent}")
    return 0


def _cmd_notify_pending(engine: RaffleEngine, args) -> int:
    sent = engine.pending_digest.run()
    engine.outbox.drain()
    print(f"Organizaciones avisadas: {sent}")
    return 0


def _cmd_auto_draw(engine: RaffleEngine, args) -> int:
    draws = engine.auto_draw.run()
    engine.outbox.drain()
    for d in draws:
        print(f"Rifa {d.raffle_id}: '{d.prize_name}' -> boleto {d.ticket_number}")
    print(f"Sorteos automáticos: {len(draws)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rifas", description="Operación del motor de rifas")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sweep", help="Libera reservas vencidas")
    p.add_argument("--raffle-id", default=None, help="Limitar a una rifa")
    p.set_defaults(func=_cmd_sweep)

    p = sub.add_parser("counts", help="Disponibles / reservados / vendidos")
    p.add_argument("--raffle-id", required=True)
    p.set_defaults(func=_cmd_counts)

    p = sub.add_parser("export-buyers", help="CSV de compradores con boletos vendidos")
    p.add_argument("--raffle-id", required=True)
    p.add_argument("--out", default=None, help="Ruta del CSV (por defecto, stdout)")
    p.set_defaults(func=_cmd_export)

    p = sub.add_parser("draw", help="Selecciona un ganador entre los boletos vendidos")
    p.add_argument("--raffle-id", required=True)
    p.add_argument("--method", choices=[m.value for m in DrawMethod], default=DrawMethod.RANDOM.value)
    p.add_argument("--type", choices=[t.value for t in DrawType], default=DrawType.MAIN_DRAW.value)
    p.add_argument("--prize-id", default=None)
    p.add_argument("--ticket", default=None, help="Número ganador (manual) o elegido entre coincidencias")
    p.add_argument("--lottery-number", default=None, help="Número publicado por la lotería")
    p.add_argument("--digits", type=int, default=None, help="Últimos K dígitos (2-5)")
    p.set_defaults(func=_cmd_draw)

    p = sub.add_parser("remind", help="Recordatorio a reservas sin comprobante que vencen pronto")
    p.set_defaults(func=_cmd_remind)

    p = sub.add_parser("notify-pending", help="Aviso diario de comprobantes por aprobar")
    p.set_defaults(func=_cmd_notify_pending)

    p = sub.add_parser("auto-draw", help="Sortea los premios cuya fecha ya pasó")
    p.set_defaults(func=_cmd_auto_draw)
    return parser


def main(argv: Optional[List[str]] = None, engine: Optional[RaffleEngine] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger("rifas", level=settings.log_level, log_file=settings.log_file or None)
    try:
        engine = engine or build_engine(settings)
        return args.func(engine, args)
    except RaffleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
