from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dms.core.errors import AppHTTPException
from dms.core.realtime import TOPICS
from dms.core.security import decode_access_token

"""
API Realtime (WebSocket).

Rôle (fonctionnel) :
- Canal WebSocket /ws/events pour pousser les événements métier vers les tableaux de bord :
  décisions de vérification, livraisons, engagements, conflits de synchro, incidents.
- Authentification par jeton (?token=...), abonnement par topics (?topics=verification,sync).
- Le WS est best-effort : si le manager WS n’est pas initialisé, la connexion est refusée.

Notes :
- Messages client : "PING" -> "PONG" ; "SUBSCRIBE a,b" change les topics de la connexion.
"""

router = APIRouter(tags=["realtime"])


def _topics(raw: str | None) -> list[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]


@router.websocket("/ws/events")
async def ws_events(ws: WebSocket):
    manager = getattr(ws.app.state, "ws_manager", None)
    if manager is None:
        # Erreur serveur : WS non disponible / non initialisé
        await ws.close(code=1011)
        return

    try:
        claims = decode_access_token(ws.query_params.get("token") or "")
    except AppHTTPException:
        # Policy violation : jeton absent ou invalide
        await ws.close(code=1008)
        return

    await manager.connect(ws, _topics(ws.query_params.get("topics")))

    # Ack de connexion (topics effectifs)
    subscribed = sorted(await manager.subscribe(ws, []))
    await ws.send_json(
        {
            "type": "WS_CONNECTED",
            "ts": datetime.now(timezone.utc).isoformat(),
            "data": {"user_id": claims.get("sub"), "topics": subscribed, "available_topics": list(TOPICS)},
        }
    )

    try:
        while True:
            msg = (await ws.receive_text()).strip()
            if msg.upper() == "PING":
                await ws.send_json({"type": "PONG", "ts": datetime.now(timezone.utc).isoformat()})
            elif msg.upper().startswith("SUBSCRIBE"):
                topics = await manager.subscribe(ws, _topics(msg[len("SUBSCRIBE"):]))
                await ws.send_json(
                    {"type": "SUBSCRIBED", "ts": datetime.now(timezone.utc).isoformat(), "data": {"topics": sorted(topics)}}
                )
    except WebSocketDisconnect:
        # Déconnexion “normale” (fermeture client)
        await manager.disconnect(ws)
    except Exception:
        # On nettoie la connexion même en cas d’erreur inattendue
        await manager.disconnect(ws)
