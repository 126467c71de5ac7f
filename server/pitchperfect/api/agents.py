from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchperfect.models.agent import Agent, AgentCreationStatus
from pitchperfect.models.base import get_db
from pitchperfect.schemas.agent import (
    AgentCreate,
    AgentIntentUpdate,
    AgentResponse,
    SignedUrlResponse,
)
from pitchperfect.services.agent_provisioning import apply_intent, provision_agent
from pitchperfect.services.elevenlabs_client import ElevenLabsClient, VoicePlatformError

router = APIRouter()


async def _get_agent(db: AsyncSession, agent_id: str) -> Agent:
    result = await db.execute(select(Agent).where(Agent.id == agent_id))
    agent = result.scalar_one_or_none()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


def _require_platform_agent(agent: Agent) -> None:
    if not agent.platform_agent_id:
        raise HTTPException(
            status_code=409,
            detail=f"Agent is not ready on the voice platform ({agent.creation_status})",
        )


@router.get("/", response_model=list[AgentResponse])
async def list_agents(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Agent).order_by(Agent.created_at))
    return result.scalars().all()


@router.post("/", response_model=AgentResponse, status_code=201)
async def create_agent(
    payload: AgentCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create an agent, provisioning its voice and platform agent unless one is given."""
    agent = Agent(
        name=payload.name,
        persona=payload.persona,
        voice_description=payload.voice_description,
        platform_agent_id=payload.platform_agent_id,
        creation_status=AgentCreationStatus.READY.value,
    )
    if not payload.platform_agent_id:
        if not payload.persona or not payload.voice_description:
            raise HTTPException(
                status_code=400,
                detail="A persona and a voice description are required",
            )
        agent.creation_status = AgentCreationStatus.CREATING_VOICE.value

    db.add(agent)
    await db.flush()

    if not payload.platform_agent_id:
        client = ElevenLabsClient()
        try:
            await provision_agent(client, agent)
        except VoicePlatformError as e:
            # Keep the failed row so the client can see what went wrong
            await db.commit()
            raise HTTPException(status_code=502, detail=f"Voice platform error: {e}")
        finally:
            await client.aclose()

    await db.flush()
    await db.refresh(agent)
    return agent


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, db: AsyncSession = Depends(get_db)):
    return await _get_agent(db, agent_id)


@router.delete("/{agent_id}", status_code=204)
async def delete_agent(agent_id: str, db: AsyncSession = Depends(get_db)):
    agent = await _get_agent(db, agent_id)
    await db.delete(agent)


@router.patch("/{agent_id}/intent", response_model=AgentResponse)
async def update_agent_intent(
    agent_id: str,
    payload: AgentIntentUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Point the agent at a presentation's intent; an empty intent resets the prompt."""
    agent = await _get_agent(db, agent_id)
    _require_platform_agent(agent)
    if not agent.system_prompt:
        raise HTTPException(status_code=409, detail="Agent has no persona prompt")

    client = ElevenLabsClient()
    try:
        await apply_intent(client, agent, payload.intent)
    except VoicePlatformError as e:
        raise HTTPException(status_code=502, detail=f"Voice platform error: {e}")
    finally:
        await client.aclose()
    return agent


@router.get("/{agent_id}/signed-url", response_model=SignedUrlResponse)
async def get_signed_url(agent_id: str, db: AsyncSession = Depends(get_db)):
    """Signed conversation URL for the browser-side voice client."""
    agent = await _get_agent(db, agent_id)
    _require_platform_agent(agent)
    client = ElevenLabsClient()
    try:
        signed_url = await client.get_signed_url(agent.platform_agent_id)
    except VoicePlatformError as e:
        raise HTTPException(status_code=502, detail=f"Voice platform error: {e}")
    finally:
        await client.aclose()
    return SignedUrlResponse(signed_url=signed_url)
