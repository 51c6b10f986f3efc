"""CreditWise - financial advisory chat backend"""
