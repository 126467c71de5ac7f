"""Provision audience agents on the voice platform.

An agent is created in three platform calls: a voice generated from the
agent's voice description, saved to the voice library, then a conversational
agent whose system prompt embodies the persona. A per-presentation intent can
later be appended to that prompt.
"""

import logging

from pitchperfect.models.agent import Agent, AgentCreationStatus
from pitchperfect.services.elevenlabs_client import ElevenLabsClient

logger = logging.getLogger(__name__)


def audience_system_prompt(persona: str) -> str:
    return f"""You are a member of the audience for a presentation.
You will be provided a persona. The persona will be wrapped in <persona> tags.
You must embody the persona and answer questions as if you are the persona.
You may be provided an intent. The intent will be wrapped in <intent> tags.
You must use the intent to guide your answers.

<rules>
1. You must answer as the persona.
2. You must not reveal that you are not the persona.
3. You must not reveal that you are an AI.
4. Talk as if you're a human, so avoid being too verbose or using complex sentences.
</rules>

<persona>
{persona}
</persona>
"""


def prompt_with_intent(system_prompt: str, intent: str) -> str:
    """An empty intent gives back the plain system prompt."""
    if not intent.strip():
        return system_prompt
    return f"{system_prompt}<intent>{intent.strip()}</intent>"


async def provision_agent(client: ElevenLabsClient, agent: Agent) -> Agent:
    """Create the voice and the platform agent for *agent*, updating it in place.

    On a platform error the agent is left ``failed`` with the error and the
    exception propagates.
    """
    agent.system_prompt = audience_system_prompt(agent.persona)
    try:
        agent.creation_status = AgentCreationStatus.CREATING_VOICE.value
        agent.voice_id = await client.create_voice(agent.name, agent.voice_description)

        agent.creation_status = AgentCreationStatus.SETTING_UP_PERSONA.value
        agent.platform_agent_id = await client.create_agent(
            agent.name, agent.system_prompt, agent.voice_id
        )
    except Exception as e:
        agent.creation_status = AgentCreationStatus.FAILED.value
        agent.error = str(e)
        logger.error(f"Provisioning agent {agent.name!r} failed: {e}")
        raise

    agent.creation_status = AgentCreationStatus.READY.value
    agent.error = None
    logger.info(f"Agent {agent.name!r} ready as {agent.platform_agent_id}")
    return agent


async def apply_intent(client: ElevenLabsClient, agent: Agent, intent: str) -> str:
    """Push the persona prompt plus *intent* to the platform agent."""
    prompt = prompt_with_intent(agent.system_prompt, intent)
    await client.update_agent_prompt(agent.platform_agent_id, prompt)
    logger.info(
        f"Agent {agent.name!r}: prompt updated ({'with' if intent.strip() else 'without'} intent)"
    )
    return prompt
