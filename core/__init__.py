"""
core — Constants, configuration, structured logging and the validation FSM.
"""
