"""Learner progress and reward-unlock engine for the Kids Learn platform."""
