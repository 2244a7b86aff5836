"""
API Dependencies
Shared dependencies for Supabase access and domain services
"""
import os
from fastapi import Depends
from supabase import create_client, Client
from dotenv import load_dotenv

from outreach_engine.domain.services.campaign_state_machine import CampaignStateMachine
from outreach_engine.domain.services.human_control import HumanControlGate
from outreach_engine.domain.services.task_scheduler import TaskScheduler, get_task_scheduler

load_dotenv()


def get_supabase() -> Client:
    """
    Get Supabase client with validation.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    return create_client(url, key)


def get_scheduler(supabase: Client = Depends(get_supabase)) -> TaskScheduler:
    return get_task_scheduler(supabase)


def get_campaign_state_machine(supabase: Client = Depends(get_supabase)) -> CampaignStateMachine:
    return CampaignStateMachine(supabase)


def get_human_control_gate(supabase: Client = Depends(get_supabase)) -> HumanControlGate:
    return HumanControlGate(supabase)
