from fastapi import APIRouter, Query

from cctv_magic.models.predefined_prompt import PredefinedPrompt

router = APIRouter()


@router.get("")
async def list_prompts(category: str | None = Query(None)):
    """Active suggestion prompts in display order."""
    query = PredefinedPrompt.find(PredefinedPrompt.is_active == True)  # noqa: E712
    if category:
        query = query.find(PredefinedPrompt.category == category)
    rows = await query.sort(+PredefinedPrompt.display_order).to_list()
    return {
        "prompts": [
            {"id": str(p.id), "title": p.title, "prompt": p.prompt, "category": p.category}
            for p in rows
        ]
    }
