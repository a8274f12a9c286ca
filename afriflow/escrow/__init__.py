from afriflow.escrow.state_machine import EscrowStateMachine, MilestoneSpec

__all__ = ["EscrowStateMachine", "MilestoneSpec"]
