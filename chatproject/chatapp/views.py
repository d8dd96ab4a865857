from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from .constants import PERSONAS, RESPONSE_LANGUAGES
from .services import build_store


async def conversation_list(request):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])
    try:
        limit = max(1, min(int(request.GET.get("limit", 50)), 200))
    except ValueError:
        return JsonResponse({"error": "limit must be an integer"}, status=400)
    conversations = await build_store().list(limit)
    return JsonResponse({"conversations": [c.to_dict() for c in conversations]})


@csrf_exempt
async def conversation_detail(request, conversation_id):
    store = build_store()
    if request.method == "GET":
        messages = await store.load(conversation_id)
        if messages is None:
            return JsonResponse({"error": "Conversation not found"}, status=404)
        return JsonResponse({"id": conversation_id, "messages": [m.to_dict() for m in messages]})
    if request.method == "DELETE":
        ok = await store.delete(conversation_id)
        return JsonResponse({"id": conversation_id, "deleted": ok}, status=200 if ok else 502)
    return HttpResponseNotAllowed(["GET", "DELETE"])


def persona_list(request):
    return JsonResponse({
        "personas": [
            {"id": p.id, "name": p.name, "description": p.description}
            for p in PERSONAS.values()
        ],
        "languages": [{"code": code, "name": name} for code, name in RESPONSE_LANGUAGES.items()],
    })
